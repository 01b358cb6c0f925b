"""Similarity search over an owner's fragments.

Per call: embed the query, ask the first store in the ranked list for the
owner's nearest fragments, move to the next store if that one raises
:class:`StorageError`, then drop weak matches and rank what is left.

The ranked store list is usually ``[pgvector, json_file]``.  The flat-file
store may serve older content than the primary; that is accepted in
exchange for answering at all.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from vaultrag.models.rag import RankedFragment, ScoredFragment
from vaultrag.utils.errors import StorageError

if TYPE_CHECKING:
    from vaultrag.interfaces.embedding_provider import IEmbeddingProvider
    from vaultrag.interfaces.vector_store_provider import IVectorStoreProvider

logger = structlog.get_logger(logger_name=__name__)


class SimilaritySearchService:
    """Answers ``search(query, owner_id, top_k)`` across ranked fragment stores.

    Parameters
    ----------
    embedding_provider:
        Embeds the query text.
    stores:
        Stores in preference order.  Unconfigured stores
        (``is_available() is False``) are skipped.
    relevance_threshold:
        Minimum cosine similarity a result must reach (default 0.3).
    default_top_k:
        Result count used when the caller does not pass one.
    max_top_k:
        Upper bound on the result count.
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        stores: list[IVectorStoreProvider],
        relevance_threshold: float = 0.3,
        default_top_k: int = 5,
        max_top_k: int = 20,
    ) -> None:
        if not stores:
            raise ValueError("SimilaritySearchService needs at least one fragment store")
        self._embedding_provider = embedding_provider
        self._stores = list(stores)
        self._relevance_threshold = relevance_threshold
        self._default_top_k = default_top_k
        self._max_top_k = max_top_k

    @property
    def relevance_threshold(self) -> float:
        return self._relevance_threshold

    async def search(
        self,
        query: str,
        owner_id: str,
        top_k: int | None = None,
    ) -> list[RankedFragment]:
        """Return *owner_id*'s fragments most similar to *query*.

        Results are sorted by descending score (ties keep store order), all
        score at least ``relevance_threshold``, and there are at most
        *top_k* of them.  An empty list is a valid answer.

        Raises
        ------
        ValueError
            If *owner_id* is empty or *top_k* is below 1.
        EmbeddingProviderError
            If the query cannot be embedded.
        StorageError
            If every store failed.
        """
        if not owner_id:
            raise ValueError("owner_id must be a non-empty string")
        if top_k is not None and top_k < 1:
            raise ValueError(f"top_k must be at least 1, got {top_k}")
        if not query.strip():
            return []

        limit = min(top_k or self._default_top_k, self._max_top_k)
        vector = await self._embedding_provider.embed_query(query)

        scored, backend = await self._query_stores(owner_id, vector, limit)

        # The stores filter by owner already; this guards against a store bug.
        relevant = [
            s
            for s in scored
            if s.fragment.owner_id == owner_id and s.similarity >= self._relevance_threshold
        ]
        relevant.sort(key=lambda s: s.similarity, reverse=True)
        ranked = [self._to_ranked(s) for s in relevant[:limit]]

        logger.info(
            "search_complete",
            owner_id=owner_id,
            backend=backend,
            query_chars=len(query),
            candidates=len(scored),
            results=len(ranked),
            top_score=round(ranked[0].score, 4) if ranked else 0.0,
        )
        return ranked

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _query_stores(
        self,
        owner_id: str,
        vector: list[float],
        limit: int,
    ) -> tuple[list[ScoredFragment], str]:
        last_error: StorageError | None = None
        tried: list[str] = []

        for store in self._stores:
            name = store.get_provider_name()
            if not store.is_available():
                continue
            tried.append(name)
            try:
                return await store.query(owner_id, vector, limit), name
            except StorageError as exc:
                last_error = exc
                logger.warning(
                    "search_backend_failed",
                    backend=name,
                    owner_id=owner_id,
                    error=str(exc),
                )

        raise StorageError(
            message=f"All fragment stores failed ({', '.join(tried) or 'none configured'})",
        ) from last_error

    @staticmethod
    def _to_ranked(scored: ScoredFragment) -> RankedFragment:
        fragment = scored.fragment
        return RankedFragment(
            title=fragment.metadata.title or fragment.source,
            content=fragment.content,
            source=fragment.source,
            score=scored.similarity,
        )
