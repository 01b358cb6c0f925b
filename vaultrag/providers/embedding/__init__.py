"""Embedding provider implementations.

Embeddings turn text into vectors whose cosine similarity tracks semantic
closeness.  vaultrag ships one implementation of IEmbeddingProvider:

    OpenAIEmbeddingProvider -- text-embedding-3-small (1536 dims) or any
    model behind an OpenAI-compatible ``/embeddings`` endpoint.
"""

from vaultrag.providers.embedding.openai_embedding_provider import (
    OpenAIEmbeddingProvider,
    resolve_dimension,
)

__all__ = ["OpenAIEmbeddingProvider", "resolve_dimension"]
