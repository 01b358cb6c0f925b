"""Shared pytest fixtures for the vaultrag test suite.

Nothing here touches the network or a database: embeddings come from a
deterministic keyword counter and stores are in-memory or tmp_path files.
"""

from __future__ import annotations

import re
from pathlib import Path

import numpy as np
import pytest

from vaultrag.interfaces.embedding_provider import IEmbeddingProvider
from vaultrag.interfaces.vector_store_provider import IVectorStoreProvider
from vaultrag.models.rag import Fragment, FragmentMetadata, ScoredFragment, StoreStats
from vaultrag.providers.vector_store.json_file_provider import (
    FlatFileIndexCache,
    JsonFileVectorStoreProvider,
)
from vaultrag.services.ingestion.chunker import TextChunker
from vaultrag.services.ingestion.extractor import TextExtractor
from vaultrag.services.ingestion.ingestion_service import IngestionService
from vaultrag.services.search_service import SimilaritySearchService
from vaultrag.utils.errors import StorageError

# One dimension per keyword; a text's vector counts keyword stems it contains.
VOCABULARY = (
    "rto",
    "recovery",
    "breach",
    "notification",
    "backup",
    "encryption",
    "invoice",
    "payment",
)
DIMENSION = len(VOCABULARY)


def keyword_vector(text: str) -> list[float]:
    lowered = text.lower()
    return [float(len(re.findall(rf"\b{word}", lowered))) for word in VOCABULARY]


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class KeywordEmbeddingProvider(IEmbeddingProvider):
    """Deterministic embedding provider: keyword counts over VOCABULARY."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [keyword_vector(t) for t in texts]

    async def embed_query(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    def get_dimension(self) -> int:
        return DIMENSION

    def get_provider_name(self) -> str:
        return "keyword_fake"

    def is_available(self) -> bool:
        return True


class InMemoryVectorStore(IVectorStoreProvider):
    """Dict-backed store with exact cosine search, owner filter applied first."""

    def __init__(self, name: str = "memory") -> None:
        self.name = name
        self.fragments: dict[str, Fragment] = {}

    async def upsert(self, fragments: list[Fragment]) -> int:
        for fragment in fragments:
            self.fragments[fragment.id] = fragment
        return len(fragments)

    async def replace_source(self, owner_id: str, source: str, fragments: list[Fragment]) -> int:
        self.fragments = {
            k: f
            for k, f in self.fragments.items()
            if not (f.source == source and f.owner_id == owner_id)
        }
        return await self.upsert(fragments)

    async def query(self, owner_id: str, vector: list[float], top_k: int) -> list[ScoredFragment]:
        query = np.asarray(vector, dtype=np.float64)
        scored: list[ScoredFragment] = []
        for fragment in self.fragments.values():
            if fragment.owner_id != owner_id:
                continue
            row = np.asarray(fragment.embedding, dtype=np.float64)
            norm = float(np.linalg.norm(row) * np.linalg.norm(query))
            similarity = float(row @ query) / norm if norm else 0.0
            scored.append(ScoredFragment(fragment=fragment, distance=1.0 - similarity))
        scored.sort(key=lambda s: s.distance)
        return scored[:top_k]

    async def delete_by_owner(self, owner_id: str) -> int:
        doomed = [k for k, f in self.fragments.items() if f.owner_id == owner_id]
        for key in doomed:
            del self.fragments[key]
        return len(doomed)

    async def delete_by_source(self, source: str, owner_id: str | None = None) -> int:
        doomed = [
            k
            for k, f in self.fragments.items()
            if f.source == source and (owner_id is None or f.owner_id == owner_id)
        ]
        for key in doomed:
            del self.fragments[key]
        return len(doomed)

    async def get_stats(self) -> StoreStats:
        values = list(self.fragments.values())
        return StoreStats(
            provider=self.name,
            total_fragments=len(values),
            total_sources=len({f.source for f in values}),
            total_owners=len({f.owner_id for f in values}),
        )

    def get_provider_name(self) -> str:
        return self.name

    def is_available(self) -> bool:
        return True


class FailingVectorStore(InMemoryVectorStore):
    """Store whose every operation raises StorageError."""

    def __init__(self, name: str = "broken") -> None:
        super().__init__(name)
        self.query_calls = 0

    async def replace_source(self, owner_id: str, source: str, fragments: list[Fragment]) -> int:
        raise StorageError(message="connection refused", provider_name=self.name)

    async def query(self, owner_id: str, vector: list[float], top_k: int) -> list[ScoredFragment]:
        self.query_calls += 1
        raise StorageError(message="connection refused", provider_name=self.name)

    async def get_stats(self) -> StoreStats:
        raise StorageError(message="connection refused", provider_name=self.name)


def make_fragment(
    content: str,
    owner_id: str = "alice",
    source: str = "notes.txt",
    chunk_index: int = 0,
    embedding: list[float] | None = None,
    title: str | None = None,
) -> Fragment:
    """Build a fragment whose embedding defaults to the keyword vector of *content*."""
    return Fragment(
        id=f"{owner_id}/{source}/1700000000000-{chunk_index}",
        content=content,
        source=source,
        embedding=embedding if embedding is not None else keyword_vector(content),
        metadata=FragmentMetadata(
            owner_id=owner_id, filename=source, chunk_index=chunk_index, title=title
        ),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


RTO_DOCUMENT = (
    "Recovery Time Objective (RTO): systems must be restored within four hours "
    "of an outage, verified quarterly."
)

BREACH_DOCUMENT = (
    "Breach notification policy: customers receive a breach notification within "
    "72 hours of confirmation, coordinated by the security lead."
)


@pytest.fixture
def embedding_provider() -> KeywordEmbeddingProvider:
    return KeywordEmbeddingProvider()


@pytest.fixture
def memory_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def index_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "vector-index.json"


@pytest.fixture
def json_store(index_path: Path) -> JsonFileVectorStoreProvider:
    return JsonFileVectorStoreProvider(cache=FlatFileIndexCache(index_path), dimension=DIMENSION)


@pytest.fixture
def ingestion_service(
    embedding_provider: KeywordEmbeddingProvider,
    memory_store: InMemoryVectorStore,
) -> IngestionService:
    return IngestionService(
        extractor=TextExtractor(),
        chunker=TextChunker(max_chars=800, overlap=150),
        embedding_provider=embedding_provider,
        stores=[memory_store],
    )


@pytest.fixture
def search_service(
    embedding_provider: KeywordEmbeddingProvider,
    memory_store: InMemoryVectorStore,
) -> SimilaritySearchService:
    return SimilaritySearchService(embedding_provider=embedding_provider, stores=[memory_store])
