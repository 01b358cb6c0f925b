"""vaultrag FastAPI application entry point.

Wires the embedding provider, fragment stores and services together and
exposes them on ``app.state`` for the route dependencies.  Configuration
comes from environment variables / ``.env`` through :class:`Settings`.

Run locally with ``python -m vaultrag.main`` or ``uvicorn vaultrag.main:app``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from vaultrag import __version__
from vaultrag.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from vaultrag.api.routes import router as api_router
from vaultrag.config.settings import Settings
from vaultrag.interfaces.vector_store_provider import IVectorStoreProvider
from vaultrag.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from vaultrag.providers.vector_store.json_file_provider import (
    FlatFileIndexCache,
    JsonFileVectorStoreProvider,
)
from vaultrag.providers.vector_store.pgvector_provider import PgVectorStoreProvider
from vaultrag.services.ingestion.chunker import TextChunker
from vaultrag.services.ingestion.extractor import TextExtractor
from vaultrag.services.ingestion.ingestion_service import IngestionService
from vaultrag.services.search_service import SimilaritySearchService
from vaultrag.utils.logging import configure_logging, get_logger

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def _build_stores(
    app_settings: Settings, dimension: int
) -> tuple[PgVectorStoreProvider | None, JsonFileVectorStoreProvider]:
    """Return ``(pgvector_store_or_None, json_store)``."""
    json_store = JsonFileVectorStoreProvider(
        cache=FlatFileIndexCache(app_settings.vector_index_path),
        dimension=dimension,
    )
    pg_store: PgVectorStoreProvider | None = None
    if app_settings.has_primary_store():
        pg_store = PgVectorStoreProvider(
            database_url=app_settings.database_url,
            dimension=dimension,
            table=app_settings.pg_table,
            connect_timeout=app_settings.pg_connect_timeout_seconds,
            ivfflat_min_rows=app_settings.ivfflat_min_rows,
            ivfflat_lists=app_settings.ivfflat_lists,
        )
    return pg_store, json_store


def _build_all(app_settings: Settings) -> dict[str, Any]:
    """Construct every provider and service.

    Returns a flat dict of named components to be stored on ``app.state``.

    Search order is pgvector first (when ``DATABASE_URL`` is set), then the
    flat JSON file.  Ingestion writes to pgvector and, unless
    ``MIRROR_TO_FLAT_FILE`` is off, also to the flat file so the fallback
    serves the same content.  Without pgvector the flat file is the only
    store for both.
    """
    embedding_provider = OpenAIEmbeddingProvider(app_settings)
    if not embedding_provider.is_available():
        _logger.warning(
            "embedding_not_configured",
            message="OPENAI_API_KEY is empty; ingestion and search will fail",
        )
    dimension = embedding_provider.get_dimension()

    pg_store, json_store = _build_stores(app_settings, dimension)

    search_stores: list[IVectorStoreProvider] = []
    write_stores: list[IVectorStoreProvider] = []
    if pg_store is not None:
        search_stores.append(pg_store)
        write_stores.append(pg_store)
    search_stores.append(json_store)
    if pg_store is None or app_settings.mirror_to_flat_file:
        write_stores.append(json_store)

    extractor = TextExtractor()
    chunker = TextChunker(
        max_chars=app_settings.chunk_max_chars,
        overlap=app_settings.chunk_overlap,
    )

    ingestion_service = IngestionService(
        extractor=extractor,
        chunker=chunker,
        embedding_provider=embedding_provider,
        stores=write_stores,
        min_document_chars=app_settings.min_document_chars,
        min_fragment_chars=app_settings.min_fragment_chars,
        preview_chars=app_settings.preview_chars,
    )
    search_service = SimilaritySearchService(
        embedding_provider=embedding_provider,
        stores=search_stores,
        relevance_threshold=app_settings.relevance_threshold,
        default_top_k=app_settings.search_default_top_k,
        max_top_k=app_settings.search_max_top_k,
    )

    _logger.info(
        "components_built",
        embedding=embedding_provider.get_provider_name(),
        dimension=dimension,
        search_stores=[s.get_provider_name() for s in search_stores],
        write_stores=[s.get_provider_name() for s in write_stores],
    )

    return {
        "settings": app_settings,
        "embedding_provider": embedding_provider,
        "stores": search_stores,
        "write_stores": write_stores,
        "pg_store": pg_store,
        "json_store": json_store,
        "extractor": extractor,
        "chunker": chunker,
        "ingestion_service": ingestion_service,
        "search_service": search_service,
    }


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(
    app_settings: Settings | None = None,
    components: dict[str, Any] | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Parameters
    ----------
    app_settings:
        Settings to wire from; defaults to the module-level instance.
    components:
        Pre-built components to place on ``app.state`` instead of calling
        :func:`_build_all` at startup.
    """
    resolved_settings = app_settings or settings

    @asynccontextmanager
    async def _lifespan(application: FastAPI):  # noqa: ANN202
        """Initialise providers and services on startup, clean up on shutdown."""
        built = components if components is not None else _build_all(resolved_settings)
        built.setdefault("settings", resolved_settings)

        for key, value in built.items():
            setattr(application.state, key, value)

        _logger.info(
            "app_startup",
            version=__version__,
            environment=resolved_settings.app_env,
            stores=len(built.get("stores", [])),
        )

        yield

        # Only close what this process built; injected components belong to the caller.
        if components is None:
            await built["embedding_provider"].close()
        _logger.info("app_shutdown")

    application = FastAPI(
        title="vaultrag API",
        version=__version__,
        description=(
            "Upload PDF, DOCX or text documents, split them into embedded "
            "fragments, and run owner-scoped semantic search over them."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    # -- API routes --
    application.include_router(api_router)

    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "vaultrag.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
