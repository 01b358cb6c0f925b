"""Business services: document ingestion and similarity search."""

from vaultrag.services.ingestion import IngestionService, VaultIndexBuilder
from vaultrag.services.search_service import SimilaritySearchService

__all__ = [
    "IngestionService",
    "SimilaritySearchService",
    "VaultIndexBuilder",
]
