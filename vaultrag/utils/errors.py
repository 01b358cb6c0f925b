"""Custom exception hierarchy for vaultrag.

All application exceptions inherit from :class:`VaultRagError`, which
carries an optional ``provider_name`` so error handlers can identify which
backend (e.g. "openai_embedding", "pgvector", "json_file") caused the
failure.

The hierarchy follows the two request paths:

    VaultRagError  (base -- catch-all for any vaultrag error)
    +-- UnsupportedFormatError     (extraction: unknown media type)
    +-- ParseFailureError          (extraction: unreadable bytes)
    +-- EmptyDocumentError         (ingestion: too little text)
    +-- EmbeddingProviderError     (remote embedding call failed)
    +-- StorageError               (fragment store backend failed)
    +-- InvalidConfigurationError  (programmer / settings error)
        +-- DimensionMismatchError (vector length disagrees with the model)

Ingestion lets every error bubble up unmodified.  Search catches
:class:`StorageError` from one backend and moves on to the next.
"""


class VaultRagError(Exception):
    """Base exception for all vaultrag errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name``.  ``__str__`` prefixes the provider name in brackets,
    e.g. ``[pgvector] connection refused``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Extraction / ingestion errors
# ---------------------------------------------------------------------------

class UnsupportedFormatError(VaultRagError):
    """Raised when a document's declared media type has no extractor."""

    def __init__(
        self,
        message: str = "Unsupported format",
        provider_name: str | None = None,
        media_type: str | None = None,
    ) -> None:
        self._media_type = media_type
        super().__init__(message=message, provider_name=provider_name)

    @property
    def media_type(self) -> str | None:
        return self._media_type


class ParseFailureError(VaultRagError):
    """Raised when a parser rejects the document bytes."""

    def __init__(
        self,
        message: str = "Document could not be parsed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmptyDocumentError(VaultRagError):
    """Raised when extracted text is below the informativeness threshold.

    Kept distinct from :class:`ParseFailureError` so callers can tell the
    user "no extractable content" rather than "unreadable file".
    """

    def __init__(
        self,
        message: str = "Document has no extractable content",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# External service / backend errors
# ---------------------------------------------------------------------------

class EmbeddingProviderError(VaultRagError):
    """Raised when the remote embedding call fails or returns garbage.

    ``status_code`` carries the upstream HTTP status when there was one.
    """

    def __init__(
        self,
        message: str = "Embedding request failed",
        provider_name: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self._status_code = status_code
        super().__init__(message=message, provider_name=provider_name)

    @property
    def status_code(self) -> int | None:
        return self._status_code


class StorageError(VaultRagError):
    """Raised when a fragment store backend cannot complete an operation."""

    def __init__(
        self,
        message: str = "Fragment store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------

class InvalidConfigurationError(VaultRagError):
    """Raised for programmer errors such as chunk overlap >= chunk size."""

    def __init__(
        self,
        message: str = "Invalid configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class DimensionMismatchError(InvalidConfigurationError):
    """Raised when a vector's length differs from the configured dimension."""

    def __init__(
        self,
        expected: int,
        actual: int,
        provider_name: str | None = None,
    ) -> None:
        self._expected = expected
        self._actual = actual
        super().__init__(
            message=f"Vector has {actual} dimensions, expected {expected}",
            provider_name=provider_name,
        )

    @property
    def expected(self) -> int:
        return self._expected

    @property
    def actual(self) -> int:
        return self._actual
