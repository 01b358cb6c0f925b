"""Integration tests for the FastAPI endpoints using TestClient and in-memory fakes."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from tests.conftest import (
    BREACH_DOCUMENT,
    RTO_DOCUMENT,
    FailingVectorStore,
    InMemoryVectorStore,
    KeywordEmbeddingProvider,
)
from vaultrag.config.settings import Settings
from vaultrag.main import create_app
from vaultrag.services.ingestion.chunker import TextChunker
from vaultrag.services.ingestion.extractor import TextExtractor
from vaultrag.services.ingestion.ingestion_service import IngestionService
from vaultrag.services.search_service import SimilaritySearchService
from vaultrag.utils.errors import EmbeddingProviderError

_TEXT = "text/plain"


def _components(
    stores: list | None = None,
    embedding_provider: KeywordEmbeddingProvider | None = None,
    **settings_overrides: Any,
) -> dict[str, Any]:
    settings = Settings(_env_file=None, **settings_overrides)
    provider = embedding_provider or KeywordEmbeddingProvider()
    stores = stores if stores is not None else [InMemoryVectorStore()]
    return {
        "settings": settings,
        "embedding_provider": provider,
        "stores": stores,
        "ingestion_service": IngestionService(
            extractor=TextExtractor(),
            chunker=TextChunker(settings.chunk_max_chars, settings.chunk_overlap),
            embedding_provider=provider,
            stores=stores,
        ),
        "search_service": SimilaritySearchService(embedding_provider=provider, stores=stores),
    }


def _client(components: dict[str, Any]) -> TestClient:
    return TestClient(create_app(app_settings=components["settings"], components=components))


def _upload(client: TestClient, filename: str, data: bytes, content_type: str, owner: str = "alice"):
    return client.post(
        "/api/v1/documents",
        files={"file": (filename, data, content_type)},
        headers={"X-Owner-Id": owner},
    )


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class TestDocuments:
    def test_upload_text(self) -> None:
        with _client(_components()) as client:
            response = _upload(client, "policy.txt", RTO_DOCUMENT.encode(), _TEXT)

        assert response.status_code == 200
        assert response.json() == {"chunks": 1, "firstChunk": RTO_DOCUMENT[:100]}

    def test_generic_content_type_uses_extension(self) -> None:
        with _client(_components()) as client:
            response = _upload(
                client, "policy.txt", RTO_DOCUMENT.encode(), "application/octet-stream"
            )

        assert response.status_code == 200

    def test_unsupported_format(self) -> None:
        with _client(_components()) as client:
            response = _upload(client, "photo.png", b"\x89PNG\r\n", "image/png")

        assert response.status_code == 415
        assert response.json()["error"] == "UnsupportedFormatError"

    def test_too_little_text(self) -> None:
        with _client(_components()) as client:
            response = _upload(client, "tiny.txt", b"hi", _TEXT)

        assert response.status_code == 422
        assert response.json()["error"] == "EmptyDocumentError"

    def test_unparseable_text(self) -> None:
        with _client(_components()) as client:
            response = _upload(client, "bad.txt", b"\xff\xfe\xfa" * 30, _TEXT)

        assert response.status_code == 422
        assert response.json()["error"] == "ParseFailureError"

    def test_missing_owner_header(self) -> None:
        with _client(_components()) as client:
            response = client.post(
                "/api/v1/documents",
                files={"file": ("policy.txt", RTO_DOCUMENT.encode(), _TEXT)},
            )

        assert response.status_code == 422

    def test_upload_too_large(self) -> None:
        with _client(_components(max_upload_bytes=16)) as client:
            response = _upload(client, "policy.txt", RTO_DOCUMENT.encode(), _TEXT)

        assert response.status_code == 413

    def test_embedding_failure(self) -> None:
        provider = KeywordEmbeddingProvider()
        provider.embed = AsyncMock(  # type: ignore[method-assign]
            side_effect=EmbeddingProviderError(message="quota exceeded", provider_name="fake")
        )
        store = InMemoryVectorStore()
        with _client(_components(stores=[store], embedding_provider=provider)) as client:
            response = _upload(client, "policy.txt", RTO_DOCUMENT.encode(), _TEXT)

        assert response.status_code == 502
        assert response.json() == {"error": "EmbeddingProviderError", "detail": "quota exceeded"}
        assert store.fragments == {}


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class TestSearch:
    def test_search_after_upload(self) -> None:
        with _client(_components()) as client:
            _upload(client, "rto.txt", RTO_DOCUMENT.encode(), _TEXT)
            _upload(client, "breach.txt", BREACH_DOCUMENT.encode(), _TEXT)

            response = client.post(
                "/api/v1/search",
                json={"query": "What is our RTO?", "topK": 3},
                headers={"X-Owner-Id": "alice"},
            )

        assert response.status_code == 200
        results = response.json()["results"]
        assert [r["filename"] for r in results] == ["rto.txt"]
        assert results[0]["title"] == "rto.txt"
        assert results[0]["content"] == RTO_DOCUMENT
        assert 0.3 <= results[0]["score"] <= 1.0

    def test_other_owner_sees_nothing(self) -> None:
        with _client(_components()) as client:
            _upload(client, "rto.txt", RTO_DOCUMENT.encode(), _TEXT, owner="alice")

            response = client.post(
                "/api/v1/search", json={"query": "RTO"}, headers={"X-Owner-Id": "bob"}
            )

        assert response.status_code == 200
        assert response.json() == {"results": []}

    def test_empty_query_rejected(self) -> None:
        with _client(_components()) as client:
            response = client.post(
                "/api/v1/search", json={"query": ""}, headers={"X-Owner-Id": "alice"}
            )

        assert response.status_code == 422

    def test_all_stores_down(self) -> None:
        with _client(_components(stores=[FailingVectorStore()])) as client:
            response = client.post(
                "/api/v1/search", json={"query": "RTO"}, headers={"X-Owner-Id": "alice"}
            )

        assert response.status_code == 503
        assert response.json()["error"] == "StorageError"


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_healthy(self) -> None:
        with _client(_components()) as client:
            response = client.get("/api/v1/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["providers"]["embedding"] is True
        assert body["providers"]["memory"]["reachable"] is True

    def test_degraded_when_one_store_down(self) -> None:
        stores = [FailingVectorStore("primary"), InMemoryVectorStore("fallback")]
        with _client(_components(stores=stores)) as client:
            body = client.get("/api/v1/health").json()

        assert body["status"] == "degraded"
        assert body["providers"]["primary"] == {"configured": True, "reachable": False}

    def test_unhealthy_when_all_down(self) -> None:
        with _client(_components(stores=[FailingVectorStore()])) as client:
            body = client.get("/api/v1/health").json()

        assert body["status"] == "unhealthy"
