"""API middleware -- CORS, request logging, and error handling.

Starlette runs middleware last-added-first, so ``create_app`` adds
ErrorHandlingMiddleware before RequestLoggingMiddleware and a request
flows::

    client -> RequestLogging -> ErrorHandling -> route handler

RequestLoggingMiddleware therefore logs the final status code, including
the ones ErrorHandlingMiddleware substitutes for domain errors.
"""

from __future__ import annotations

import time

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from vaultrag.api.schemas import ErrorResponse
from vaultrag.utils.errors import (
    EmbeddingProviderError,
    EmptyDocumentError,
    InvalidConfigurationError,
    ParseFailureError,
    StorageError,
    UnsupportedFormatError,
    VaultRagError,
)
from vaultrag.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

# Most specific class first; the first isinstance match wins.
_STATUS_BY_ERROR: list[tuple[type[VaultRagError], int]] = [
    (UnsupportedFormatError, 415),
    (ParseFailureError, 422),
    (EmptyDocumentError, 422),
    (EmbeddingProviderError, 502),
    (StorageError, 503),
    (InvalidConfigurationError, 500),
]


def status_for_error(exc: VaultRagError) -> int:
    """Return the HTTP status code for a domain error."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Add CORS middleware; defaults to ``["*"]`` for development."""
    origins = allowed_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ---------------------------------------------------------------------------
# Request Logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None

        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = response.status_code if response else 500
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=status_code,
                duration_ms=duration_ms,
            )


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turn ``VaultRagError`` subclasses into structured JSON errors.

    The client sees the error class name and message only; provider names
    and stack traces stay in the server log.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except VaultRagError as exc:
            status_code = status_for_error(exc)
            _logger.error(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                status=status_code,
                path=str(request.url.path),
            )
            body = ErrorResponse(error=type(exc).__name__, detail=exc.message)
            return JSONResponse(status_code=status_code, content=body.model_dump())
