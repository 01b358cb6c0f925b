"""HTTP API: routes, request/response schemas, and middleware."""

from vaultrag.api.routes import router

__all__ = ["router"]
