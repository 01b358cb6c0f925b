"""Data models for the vaultrag fragment store.

Defines Pydantic v2 models for stored fragments, search results and
ingestion summaries.  All models are frozen.

Flow for new readers:

    1. INGESTION: an uploaded document is extracted to text and split into
       overlapping fragments (``services/ingestion/``).
    2. EMBEDDING: each fragment's text becomes a fixed-length vector.
    3. STORAGE: fragments + vectors land in PostgreSQL/pgvector and/or the
       flat JSON index (``providers/vector_store/``).
    4. SEARCH: a query is embedded, the nearest fragments for that owner are
       fetched, weak matches are dropped and the rest ranked
       (``services/search_service.py``).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Keys the storage layer writes itself; extension entries may not shadow them.
_RESERVED_METADATA_KEYS = frozenset({"ownerId", "filename", "chunkIndex", "title"})


def fragment_id(owner_id: str, filename: str, ingested_at_ms: int, chunk_index: int) -> str:
    """Build the deterministic fragment id ``owner/filename/timestamp-index``."""
    return f"{owner_id}/{filename}/{ingested_at_ms}-{chunk_index}"


# ---------------------------------------------------------------------------
# FragmentMetadata -- the typed replacement for a free-form metadata bag.
# ---------------------------------------------------------------------------
class FragmentMetadata(BaseModel):
    """Metadata every component reads, plus an open extension map.

    Stored as JSON with camelCase keys (``ownerId``, ``chunkIndex``) so rows
    written by other tools against the same table stay readable.
    """

    model_config = ConfigDict(frozen=True)

    owner_id: str = Field(min_length=1, description="Tenant that owns the fragment.")
    filename: str = Field(description="Originating filename.")
    chunk_index: int = Field(default=0, ge=0, description="Position within the document.")
    title: str | None = Field(default=None, description="Optional display title.")
    extra: dict[str, Any] = Field(
        default_factory=dict,
        description="Extension keys carried through storage untouched.",
    )

    @field_validator("extra")
    @classmethod
    def _no_reserved_keys(cls, value: dict[str, Any]) -> dict[str, Any]:
        clash = _RESERVED_METADATA_KEYS.intersection(value)
        if clash:
            raise ValueError(f"extra metadata may not override {sorted(clash)}")
        return value

    def to_storage(self) -> dict[str, Any]:
        """Return the camelCase dict written to JSONB / the flat file."""
        payload: dict[str, Any] = dict(self.extra)
        payload["ownerId"] = self.owner_id
        payload["filename"] = self.filename
        payload["chunkIndex"] = self.chunk_index
        if self.title is not None:
            payload["title"] = self.title
        return payload

    @classmethod
    def from_storage(cls, payload: dict[str, Any]) -> FragmentMetadata:
        """Inverse of :meth:`to_storage`; unknown keys go to ``extra``."""
        extra = {k: v for k, v in payload.items() if k not in _RESERVED_METADATA_KEYS}
        return cls(
            owner_id=str(payload.get("ownerId", "")),
            filename=str(payload.get("filename", "")),
            chunk_index=int(payload.get("chunkIndex", 0)),
            title=payload.get("title"),
            extra=extra,
        )


# ---------------------------------------------------------------------------
# Fragment -- the persisted unit.
# ---------------------------------------------------------------------------
class Fragment(BaseModel):
    """A slice of document text with its embedding, ready for storage."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Deterministic fragment id.")
    content: str = Field(description="Extracted text slice.")
    source: str = Field(description="Originating filename.")
    embedding: list[float] = Field(min_length=1, description="Embedding vector.")
    metadata: FragmentMetadata
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc),
        description="Creation timestamp (UTC).",
    )

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("fragment content must not be blank")
        return value

    @property
    def owner_id(self) -> str:
        return self.metadata.owner_id


# ---------------------------------------------------------------------------
# Query results
# ---------------------------------------------------------------------------
class ScoredFragment(BaseModel):
    """A fragment returned by a store query together with its cosine distance."""

    model_config = ConfigDict(frozen=True)

    fragment: Fragment
    distance: float = Field(description="Cosine distance (0 = identical direction).")

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance


class RankedFragment(BaseModel):
    """One search hit as handed back to callers of the search entry point."""

    model_config = ConfigDict(frozen=True)

    title: str = Field(description="Metadata title, or the filename when absent.")
    content: str
    source: str = Field(description="Originating filename.")
    score: float = Field(description="Cosine similarity to the query.")


# ---------------------------------------------------------------------------
# IngestResult -- output of the ingestion pipeline for one document.
# ---------------------------------------------------------------------------
class IngestResult(BaseModel):
    """Summary of one ingestion call."""

    model_config = ConfigDict(frozen=True)

    fragment_count: int = Field(ge=0, description="Number of fragments stored.")
    preview_text: str = Field(default="", description="Start of the first fragment.")
    source: str = Field(description="Filename the fragments were stored under.")
    fragment_ids: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# StoreStats -- size snapshot of one backend.
# ---------------------------------------------------------------------------
class StoreStats(BaseModel):
    """Aggregate counts for a single fragment store backend."""

    model_config = ConfigDict(frozen=True)

    provider: str
    total_fragments: int = Field(default=0, ge=0)
    total_sources: int = Field(default=0, ge=0)
    total_owners: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Incremental vault indexing -- per-file hash manifest and run report.
# ---------------------------------------------------------------------------
class ManifestEntry(BaseModel):
    """Content hash of one note file as of its last indexing."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    filename: str
    owner_id: str = Field(alias="ownerId", min_length=1)
    hash: str = Field(description="Hex sha256 of the file bytes.")
    indexed_at: datetime = Field(alias="indexedAt")
    chunk_count: int = Field(alias="chunkCount", ge=0)


class VaultIndexReport(BaseModel):
    """What an incremental vault run did, file by file."""

    model_config = ConfigDict(frozen=True)

    indexed: list[IngestResult] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)

    @property
    def fragment_count(self) -> int:
        return sum(r.fragment_count for r in self.indexed)
