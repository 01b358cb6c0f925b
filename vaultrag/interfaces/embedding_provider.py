"""Abstract base class for text-embedding service providers.

Defines the contract for turning text into fixed-length vectors.  The
concrete OpenAI adapter lives in ``vaultrag/providers/embedding/``; tests
inject a deterministic fake through the same interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementation: OpenAIEmbeddingProvider (vaultrag/providers/embedding/)
class IEmbeddingProvider(ABC):
    """Contract for embedding services used by ingestion and search.

    Vectors produced here are written through
    :class:`~vaultrag.interfaces.vector_store_provider.IVectorStoreProvider`
    and compared against query vectors produced by :meth:`embed_query`.
    """

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.  Implementations batch
            internally if the remote API has a per-call limit.

        Returns
        -------
        list[list[float]]
            Vectors in the same order as *texts*, one per input, each of
            length :meth:`get_dimension`.

        Raises
        ------
        vaultrag.utils.errors.EmbeddingProviderError
            On any failed or malformed response.  Nothing is retried.
        """

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Generate the embedding vector for a single search query."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the fixed dimensionality of produced vectors (e.g. ``1536``)."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier such as ``"openai_embedding"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured (credentials present)."""
