"""FastAPI routes for document ingestion and similarity search.

Endpoint                 Method  Description
-------------------------------------------------------------------------
/api/v1/documents        POST    Upload a document -> extract, chunk, embed, store
/api/v1/search           POST    Ranked fragments for a natural-language query
/api/v1/health           GET     Embedding + store availability

The owner of every request arrives in the ``X-Owner-Id`` header, set by the
authentication layer in front of this service.  Services are read from
``app.state`` (populated by ``main._build_all``) through ``Depends`` helpers.
"""

from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, UploadFile

from vaultrag import __version__
from vaultrag.api.schemas import (
    ErrorResponse,
    HealthResponse,
    IngestResponse,
    SearchRequest,
    SearchResponse,
    SearchResultItem,
)
from vaultrag.config.settings import Settings
from vaultrag.services.ingestion.extractor import guess_media_type
from vaultrag.services.ingestion.ingestion_service import IngestionService
from vaultrag.services.search_service import SimilaritySearchService
from vaultrag.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

router = APIRouter(prefix="/api/v1")

_UPLOAD_CHUNK_SIZE = 64 * 1024
_GENERIC_CONTENT_TYPES = frozenset({"", "application/octet-stream"})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_ingestion_service(request: Request) -> IngestionService:
    return request.app.state.ingestion_service


def _get_search_service(request: Request) -> SimilaritySearchService:
    return request.app.state.search_service


def _get_settings(request: Request) -> Settings:
    return request.app.state.settings


IngestionDep = Annotated[IngestionService, Depends(_get_ingestion_service)]
SearchDep = Annotated[SimilaritySearchService, Depends(_get_search_service)]
SettingsDep = Annotated[Settings, Depends(_get_settings)]
OwnerDep = Annotated[str, Header(alias="X-Owner-Id", min_length=1, max_length=256)]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post(
    "/documents",
    response_model=IngestResponse,
    responses={
        413: {"model": ErrorResponse},
        415: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
    summary="Upload a PDF, DOCX or text document for indexing",
)
async def ingest_document(
    file: UploadFile,
    owner_id: OwnerDep,
    ingestion: IngestionDep,
    settings: SettingsDep,
) -> IngestResponse:
    """Extract, chunk, embed and store one uploaded document."""
    filename = file.filename or "upload"
    media_type = (file.content_type or "").split(";", 1)[0].strip().lower()
    if media_type in _GENERIC_CONTENT_TYPES:
        media_type = guess_media_type(filename) or media_type

    # Stream in chunks so oversized uploads are rejected early.
    parts: list[bytes] = []
    total_size = 0
    while True:
        part = await file.read(_UPLOAD_CHUNK_SIZE)
        if not part:
            break
        total_size += len(part)
        if total_size > settings.max_upload_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"File too large: maximum is {settings.max_upload_bytes} bytes",
            )
        parts.append(part)
    data = b"".join(parts)

    result = await ingestion.ingest(data, media_type, filename, owner_id)
    return IngestResponse(chunks=result.fragment_count, first_chunk=result.preview_text)


@router.post(
    "/search",
    response_model=SearchResponse,
    responses={502: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="Semantic search over the caller's documents",
)
async def search_fragments(
    body: SearchRequest,
    owner_id: OwnerDep,
    search: SearchDep,
) -> SearchResponse:
    """Return the caller's fragments ranked by similarity to the query."""
    ranked = await search.search(body.query, owner_id, top_k=body.top_k)
    return SearchResponse(
        results=[
            SearchResultItem(title=r.title, content=r.content, filename=r.source, score=r.score)
            for r in ranked
        ]
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Application health check",
)
async def health_check(request: Request) -> HealthResponse:
    """Report embedding availability and per-store reachability.

    ``healthy``: embedding configured and every configured store answers.
    ``degraded``: embedding configured and at least one store answers.
    ``unhealthy``: otherwise.
    """
    providers: dict[str, Any] = {}

    embedding = getattr(request.app.state, "embedding_provider", None)
    embedding_ok = bool(embedding is not None and embedding.is_available())
    providers["embedding"] = embedding_ok

    configured = 0
    reachable = 0
    for store in getattr(request.app.state, "stores", []):
        name = store.get_provider_name()
        if not store.is_available():
            providers[name] = {"configured": False}
            continue
        configured += 1
        try:
            stats = await store.get_stats()
        except StorageError as exc:
            logger.warning("health_store_unreachable", backend=name, error=str(exc))
            providers[name] = {"configured": True, "reachable": False}
            continue
        reachable += 1
        providers[name] = {
            "configured": True,
            "reachable": True,
            "fragments": stats.total_fragments,
            "sources": stats.total_sources,
        }

    if embedding_ok and configured and reachable == configured:
        status = "healthy"
    elif embedding_ok and reachable:
        status = "degraded"
    else:
        status = "unhealthy"

    return HealthResponse(status=status, version=__version__, providers=providers)
