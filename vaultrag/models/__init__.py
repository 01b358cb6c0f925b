"""Pydantic models shared across the ingestion and search paths."""

from vaultrag.models.rag import (
    Fragment,
    FragmentMetadata,
    IngestResult,
    ManifestEntry,
    RankedFragment,
    ScoredFragment,
    StoreStats,
    VaultIndexReport,
    fragment_id,
)

__all__ = [
    "Fragment",
    "FragmentMetadata",
    "IngestResult",
    "ManifestEntry",
    "RankedFragment",
    "ScoredFragment",
    "StoreStats",
    "VaultIndexReport",
    "fragment_id",
]
