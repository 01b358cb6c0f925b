"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Works against real OpenAI and OpenAI-compatible gateways via a custom
``base_url``.  Retries are disabled on the client: quota and auth errors
surface immediately as :class:`EmbeddingProviderError`, and backoff is left
to whoever wraps the call.
"""

from __future__ import annotations

import math

import openai
import structlog

from vaultrag.config.settings import Settings
from vaultrag.interfaces.embedding_provider import IEmbeddingProvider
from vaultrag.utils.errors import EmbeddingProviderError, InvalidConfigurationError

logger = structlog.get_logger(logger_name=__name__)

_OPENAI_BATCH_LIMIT = 2048

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
    "nomic-embed-text": 768,
}


def resolve_dimension(settings: Settings) -> int:
    """Return the vector dimension implied by *settings*.

    ``embedding_dimensions`` wins when set; otherwise the model table is used.

    Raises
    ------
    InvalidConfigurationError
        If the model is unknown and no explicit dimension is configured.
    """
    if settings.embedding_dimensions > 0:
        return settings.embedding_dimensions
    try:
        return _MODEL_DIMENSIONS[settings.embedding_model]
    except KeyError:
        raise InvalidConfigurationError(
            message=(
                f"Unknown embedding model {settings.embedding_model!r}; "
                "set EMBEDDING_DIMENSIONS explicitly"
            ),
        ) from None


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``text-embedding-3-small`` (1536 dims) by default.  Inputs above the
    per-call limit are split into batches; every response is checked for
    count, order and dimension before it is returned.
    """

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._api_key = settings.openai_api_key
        self._model = settings.embedding_model
        self._dimension = resolve_dimension(settings)
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

        if client is None:
            client_kwargs: dict = {
                "api_key": self._api_key or "unset",
                "timeout": openai.Timeout(settings.embedding_timeout_seconds, connect=5.0),
                "max_retries": 0,
            }
            if settings.openai_base_url:
                client_kwargs["base_url"] = settings.openai_base_url
            client = openai.AsyncOpenAI(**client_kwargs)
        self._client = client

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts, order preserved."""
        if not texts:
            return []

        all_embeddings: list[list[float]] = []
        for start in range(0, len(texts), _OPENAI_BATCH_LIMIT):
            batch = texts[start : start + _OPENAI_BATCH_LIMIT]
            response = await self._request(batch)
            all_embeddings.extend(self._unpack(response, expected=len(batch)))
            logger.info(
                "openai_embedding_batch",
                model=self._model,
                provider=self._provider_label,
                batch_size=len(batch),
                tokens=response.usage.total_tokens if response.usage else None,
            )
        return all_embeddings

    async def embed_query(self, text: str) -> list[float]:
        """Generate an embedding vector for a single query string."""
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _request(self, batch: list[str]):  # noqa: ANN202 - SDK response type
        try:
            return await self._client.embeddings.create(input=batch, model=self._model)
        except openai.APIStatusError as exc:
            logger.error(
                "openai_embedding_failed",
                provider=self._provider_label,
                status_code=exc.status_code,
                batch_size=len(batch),
            )
            raise EmbeddingProviderError(
                message=f"{self._provider_label} returned HTTP {exc.status_code}: {exc.message}",
                provider_name=self.get_provider_name(),
                status_code=exc.status_code,
            ) from exc
        except openai.APITimeoutError as exc:
            raise EmbeddingProviderError(
                message=(
                    f"{self._provider_label} timed out after "
                    f"{self._settings.embedding_timeout_seconds}s"
                ),
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise EmbeddingProviderError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def _unpack(self, response, expected: int) -> list[list[float]]:  # noqa: ANN001
        """Validate a response and return its vectors in input order."""
        data = getattr(response, "data", None)
        if not data or len(data) != expected:
            raise EmbeddingProviderError(
                message=(
                    f"{self._provider_label} returned {len(data) if data else 0} "
                    f"embeddings for {expected} inputs"
                ),
                provider_name=self.get_provider_name(),
            )

        # The API reports each item's input position; do not trust list order.
        ordered = sorted(data, key=lambda item: item.index)
        vectors: list[list[float]] = []
        for position, item in enumerate(ordered):
            vector = item.embedding
            if item.index != position or not isinstance(vector, list):
                raise EmbeddingProviderError(
                    message=f"{self._provider_label} returned a malformed embedding list",
                    provider_name=self.get_provider_name(),
                )
            if len(vector) != self._dimension:
                raise EmbeddingProviderError(
                    message=(
                        f"{self._provider_label} returned {len(vector)}-dim vector, "
                        f"expected {self._dimension}"
                    ),
                    provider_name=self.get_provider_name(),
                )
            if not all(math.isfinite(v) for v in vector):
                raise EmbeddingProviderError(
                    message=f"{self._provider_label} returned non-finite values",
                    provider_name=self.get_provider_name(),
                )
            vectors.append(vector)
        return vectors
