"""Public interface definitions for external service providers.

Business logic talks to the embedding model and the fragment stores only
through these abstract classes.  Concrete adapters live in
``vaultrag/providers/`` and are wired together in ``vaultrag/main.py`` (HTTP)
and ``vaultrag/cli/`` (command line).  Tests swap in fakes.

    Interface              ->  Concrete implementations
    -----------------------------------------------------------------
    IEmbeddingProvider     ->  OpenAIEmbeddingProvider
    IVectorStoreProvider   ->  PgVectorStoreProvider,
                               JsonFileVectorStoreProvider
"""

from vaultrag.interfaces.embedding_provider import IEmbeddingProvider
from vaultrag.interfaces.vector_store_provider import IVectorStoreProvider

__all__ = [
    "IEmbeddingProvider",
    "IVectorStoreProvider",
]
