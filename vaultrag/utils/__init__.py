"""Shared utilities: the error hierarchy and structured logging setup."""

from vaultrag.utils.errors import (
    DimensionMismatchError,
    EmbeddingProviderError,
    EmptyDocumentError,
    InvalidConfigurationError,
    ParseFailureError,
    StorageError,
    UnsupportedFormatError,
    VaultRagError,
)
from vaultrag.utils.logging import configure_logging, get_logger

__all__ = [
    "DimensionMismatchError",
    "EmbeddingProviderError",
    "EmptyDocumentError",
    "InvalidConfigurationError",
    "ParseFailureError",
    "StorageError",
    "UnsupportedFormatError",
    "VaultRagError",
    "configure_logging",
    "get_logger",
]
