"""Pydantic request/response schemas for the vaultrag HTTP API.

Request schemas end with ``Request``, response schemas with ``Response``.
Field names on the wire follow the existing clients (``firstChunk``,
``filename``), hence the aliases.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class IngestResponse(BaseModel):
    """Returned after a document upload has been stored."""

    model_config = ConfigDict(populate_by_name=True)

    chunks: int = Field(ge=0, description="Number of fragments stored.")
    first_chunk: str = Field(alias="firstChunk", description="Preview of the first fragment.")


class SearchRequest(BaseModel):
    """Natural-language query against the caller's own fragments."""

    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(..., min_length=1, max_length=2000)
    top_k: int | None = Field(default=None, ge=1, alias="topK")


class SearchResultItem(BaseModel):
    """One ranked fragment."""

    title: str
    content: str
    filename: str
    score: float


class SearchResponse(BaseModel):
    """Ranked fragments, best first.  May be empty."""

    results: list[SearchResultItem] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
