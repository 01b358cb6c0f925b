"""Abstract base class for fragment store providers.

Defines the contract for storing embedded fragments and retrieving the
nearest ones for a single owner.  Two implementations ship with vaultrag:
PostgreSQL + pgvector (primary) and a flat JSON file (degraded fallback).
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from vaultrag.models.rag import Fragment, ScoredFragment, StoreStats


# Concrete implementations (vaultrag/providers/vector_store/):
#   PgVectorStoreProvider       -- native vector column, server-side distance
#   JsonFileVectorStoreProvider -- brute-force cosine over a cached JSON file
class IVectorStoreProvider(ABC):
    """Contract for fragment stores used by ingestion and search.

    Every query is scoped to exactly one owner.  Implementations must push
    the owner filter into the storage query where they can and must never
    return a fragment belonging to another owner.

    All methods that touch storage are async and raise
    :class:`~vaultrag.utils.errors.StorageError` on backend failure, so the
    search service can fall back to the next store.
    """

    @abstractmethod
    async def upsert(self, fragments: list[Fragment]) -> int:
        """Write or replace fragments by id.

        Each fragment is written atomically; the batch as a whole need not be.

        Parameters
        ----------
        fragments:
            Fully embedded fragments.  Every embedding must have the store's
            configured dimension.

        Returns
        -------
        int
            The number of fragments written.

        Raises
        ------
        vaultrag.utils.errors.DimensionMismatchError
            If any embedding has the wrong length.  Nothing is written.
        vaultrag.utils.errors.StorageError
            If the backend write fails.
        """

    @abstractmethod
    async def replace_source(
        self,
        owner_id: str,
        source: str,
        fragments: list[Fragment],
    ) -> int:
        """Swap *owner_id*'s fragments for *source* with *fragments*.

        Removes every fragment of that owner whose source is *source*, then
        writes *fragments*, as one atomic step where the backend allows it.
        Re-ingesting the same file therefore never leaves duplicates.

        Returns
        -------
        int
            The number of fragments written.
        """

    @abstractmethod
    async def query(
        self,
        owner_id: str,
        vector: list[float],
        top_k: int,
    ) -> list[ScoredFragment]:
        """Return up to *top_k* of *owner_id*'s fragments nearest to *vector*.

        Results are ordered by ascending cosine distance.

        Raises
        ------
        vaultrag.utils.errors.DimensionMismatchError
            If *vector* has the wrong length.
        vaultrag.utils.errors.StorageError
            If the backend query fails.
        """

    @abstractmethod
    async def delete_by_owner(self, owner_id: str) -> int:
        """Delete every fragment owned by *owner_id*; return the count removed."""

    @abstractmethod
    async def delete_by_source(self, source: str, owner_id: str | None = None) -> int:
        """Delete fragments whose source filename is *source*.

        When *owner_id* is given only that owner's fragments are removed.
        Returns the count removed.
        """

    @abstractmethod
    async def get_stats(self) -> StoreStats:
        """Return fragment/source/owner counts for this backend."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier such as ``"pgvector"`` or ``"json_file"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the backend is configured.

        This is a configuration check only; it performs no IO.
        """
