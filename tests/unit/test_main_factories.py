"""Unit tests for component wiring in ``vaultrag.main``."""

from __future__ import annotations

from pathlib import Path

from vaultrag.config.settings import Settings
from vaultrag.main import _build_all, create_app
from vaultrag.providers.vector_store.json_file_provider import JsonFileVectorStoreProvider
from vaultrag.providers.vector_store.pgvector_provider import PgVectorStoreProvider


def _settings(tmp_path: Path, **overrides) -> Settings:
    defaults = {
        "openai_api_key": "sk-test",
        "database_url": "",
        "vector_index_path": str(tmp_path / "index.json"),
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


def _names(stores) -> list[str]:  # noqa: ANN001
    return [s.get_provider_name() for s in stores]


class TestBuildAll:
    def test_flat_file_only_without_database(self, tmp_path: Path) -> None:
        components = _build_all(_settings(tmp_path))

        assert components["pg_store"] is None
        assert isinstance(components["json_store"], JsonFileVectorStoreProvider)
        assert _names(components["stores"]) == ["json_file"]
        assert _names(components["write_stores"]) == ["json_file"]
        assert components["embedding_provider"].get_dimension() == 1536

    def test_pgvector_first_and_mirrored(self, tmp_path: Path) -> None:
        components = _build_all(_settings(tmp_path, database_url="postgresql://u@h/db"))

        assert isinstance(components["pg_store"], PgVectorStoreProvider)
        assert _names(components["stores"]) == ["pgvector", "json_file"]
        assert _names(components["write_stores"]) == ["pgvector", "json_file"]
        assert components["ingestion_service"].stores == components["write_stores"]

    def test_mirroring_can_be_disabled(self, tmp_path: Path) -> None:
        components = _build_all(
            _settings(tmp_path, database_url="postgresql://u@h/db", mirror_to_flat_file=False)
        )

        assert _names(components["stores"]) == ["pgvector", "json_file"]
        assert _names(components["write_stores"]) == ["pgvector"]

    def test_search_threshold_from_settings(self, tmp_path: Path) -> None:
        components = _build_all(_settings(tmp_path, relevance_threshold=0.5))
        assert components["search_service"].relevance_threshold == 0.5


class TestCreateApp:
    def test_routes_registered(self, tmp_path: Path) -> None:
        app = create_app(app_settings=_settings(tmp_path))

        assert app.url_path_for("ingest_document") == "/api/v1/documents"
        assert app.url_path_for("search_fragments") == "/api/v1/search"
        assert app.url_path_for("health_check") == "/api/v1/health"
