"""Fragment store provider implementations.

PgVectorStoreProvider is the primary store: PostgreSQL with the pgvector
extension, distance computed in the database.  JsonFileVectorStoreProvider
is the degraded fallback: one JSON file, cached in memory, scanned with
brute-force cosine similarity.

To add a third backend, implement IVectorStoreProvider and add it to the
ranked store list built in ``vaultrag/main.py``.
"""

from vaultrag.providers.vector_store.json_file_provider import (
    FlatFileIndexCache,
    JsonFileVectorStoreProvider,
)
from vaultrag.providers.vector_store.pgvector_provider import PgVectorStoreProvider

__all__ = [
    "FlatFileIndexCache",
    "JsonFileVectorStoreProvider",
    "PgVectorStoreProvider",
]
