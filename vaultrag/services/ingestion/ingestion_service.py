"""Orchestrator for single-document ingestion.

Pipeline stages: **extract -> validate -> chunk -> embed -> store**.

:class:`IngestionService` coordinates its collaborators (text extractor,
chunker, embedding provider, fragment stores) without any of them knowing
about each other.  All of them are injected, so tests can swap in fakes.

The whole document is embedded before anything is written.  If the
embedding call fails, no store is touched and the error propagates
unchanged.  Each store then receives the document through
:meth:`IVectorStoreProvider.replace_source`, which swaps out any fragments
left by an earlier ingestion of the same file for the same owner.  If a
later store fails, the source is deleted again from the stores already
written, so no store keeps fragments from a failed ingestion.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from vaultrag.models.rag import Fragment, FragmentMetadata, IngestResult, fragment_id
from vaultrag.utils.errors import (
    EmbeddingProviderError,
    EmptyDocumentError,
    StorageError,
    VaultRagError,
)

if TYPE_CHECKING:
    from vaultrag.interfaces.embedding_provider import IEmbeddingProvider
    from vaultrag.interfaces.vector_store_provider import IVectorStoreProvider
    from vaultrag.services.ingestion.chunker import TextChunker
    from vaultrag.services.ingestion.extractor import TextExtractor

logger = structlog.get_logger(logger_name=__name__)


class IngestionService:
    """Turns one uploaded document into stored, embedded fragments.

    Parameters
    ----------
    extractor:
        Converts bytes + media type into plain text.
    chunker:
        Sliding-window chunker (``max_chars`` / ``overlap``).
    embedding_provider:
        Produces one vector per fragment.
    stores:
        Stores to write to, in order.  Typically the pgvector store (when
        configured) followed by the flat-file store so the fallback stays
        current.  A :class:`StorageError` from any of them aborts the call.
    min_document_chars:
        Extracted text shorter than this raises :class:`EmptyDocumentError`.
    min_fragment_chars:
        Fragments shorter than this are dropped before embedding.
    preview_chars:
        Length of the preview returned to the caller.
    """

    def __init__(
        self,
        extractor: TextExtractor,
        chunker: TextChunker,
        embedding_provider: IEmbeddingProvider,
        stores: list[IVectorStoreProvider],
        min_document_chars: int = 50,
        min_fragment_chars: int = 20,
        preview_chars: int = 100,
    ) -> None:
        if not stores:
            raise ValueError("IngestionService needs at least one fragment store")
        self._extractor = extractor
        self._chunker = chunker
        self._embedding_provider = embedding_provider
        self._stores = list(stores)
        self._min_document_chars = min_document_chars
        self._min_fragment_chars = min_fragment_chars
        self._preview_chars = preview_chars

    @property
    def stores(self) -> list[IVectorStoreProvider]:
        return list(self._stores)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(
        self,
        data: bytes,
        media_type: str,
        filename: str,
        owner_id: str,
        ingested_at: datetime | None = None,
    ) -> IngestResult:
        """Ingest one document for *owner_id*.

        Parameters
        ----------
        data:
            Raw document bytes.
        media_type:
            Declared media type (PDF, DOCX or plain text).
        filename:
            Stored as each fragment's ``source``.
        owner_id:
            Tenant identifier, supplied by the authentication layer.
        ingested_at:
            Timestamp baked into fragment ids.  Passing the same value again
            reproduces the same ids.  Defaults to now.

        Returns
        -------
        IngestResult
            Fragment count, ids and a short preview of the first fragment.

        Raises
        ------
        UnsupportedFormatError, ParseFailureError
            From the extractor.
        EmptyDocumentError
            If the text (or what is left after dropping tiny fragments) is
            below the minimum length.
        EmbeddingProviderError
            If embedding fails.  Nothing is stored.
        StorageError
            If a store write fails.  Stores written before the failure have
            the source removed again.
        """
        if not owner_id:
            raise ValueError("owner_id must be a non-empty string")

        start = time.monotonic()
        stamp = ingested_at or datetime.now(tz=timezone.utc)
        log = logger.bind(filename=filename, owner_id=owner_id, media_type=media_type)
        stage = "extract"

        try:
            text = await self._extractor.extract(data, media_type)

            stage = "validate"
            if len(text.strip()) < self._min_document_chars:
                raise EmptyDocumentError(
                    message=(
                        f"Extracted {len(text.strip())} characters; "
                        f"at least {self._min_document_chars} are required"
                    )
                )

            stage = "chunk"
            pieces = [
                piece
                for piece in self._chunker.chunk(text)
                if len(piece.strip()) >= self._min_fragment_chars
            ]
            if not pieces:
                raise EmptyDocumentError(message="Document produced no usable fragments")

            stage = "embed"
            vectors = await self._embedding_provider.embed(pieces)
            if len(vectors) != len(pieces):
                raise EmbeddingProviderError(
                    message=f"Got {len(vectors)} embeddings for {len(pieces)} fragments",
                    provider_name=self._embedding_provider.get_provider_name(),
                )

            fragments = self._build_fragments(pieces, vectors, filename, owner_id, stamp)

            stage = "store"
            await self._write_all(fragments, filename, owner_id)
        except VaultRagError as exc:
            log.warning("ingestion_failed", stage=stage, error_type=type(exc).__name__, error=str(exc))
            raise

        result = IngestResult(
            fragment_count=len(fragments),
            preview_text=pieces[0][: self._preview_chars],
            source=filename,
            fragment_ids=[f.id for f in fragments],
        )
        log.info(
            "ingestion_complete",
            fragments=result.fragment_count,
            text_chars=len(text),
            stores=[s.get_provider_name() for s in self._stores],
            time_s=round(time.monotonic() - start, 2),
        )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _write_all(self, fragments: list[Fragment], filename: str, owner_id: str) -> None:
        """Replace the source in every store, or in none of them.

        When a store fails, the stores already written have this source
        removed again before the error propagates.
        """
        written: list[IVectorStoreProvider] = []
        for store in self._stores:
            try:
                await store.replace_source(owner_id, filename, fragments)
            except StorageError:
                for done in written:
                    try:
                        removed = await done.delete_by_source(filename, owner_id=owner_id)
                    except StorageError as undo_exc:
                        logger.error(
                            "ingestion_rollback_failed",
                            backend=done.get_provider_name(),
                            filename=filename,
                            owner_id=owner_id,
                            error=str(undo_exc),
                        )
                        continue
                    logger.warning(
                        "ingestion_rolled_back",
                        backend=done.get_provider_name(),
                        filename=filename,
                        owner_id=owner_id,
                        removed=removed,
                    )
                raise
            written.append(store)

    @staticmethod
    def _build_fragments(
        pieces: list[str],
        vectors: list[list[float]],
        filename: str,
        owner_id: str,
        stamp: datetime,
    ) -> list[Fragment]:
        stamp_ms = int(stamp.timestamp() * 1000)
        return [
            Fragment(
                id=fragment_id(owner_id, filename, stamp_ms, index),
                content=piece,
                source=filename,
                embedding=vector,
                metadata=FragmentMetadata(owner_id=owner_id, filename=filename, chunk_index=index),
                created_at=stamp,
            )
            for index, (piece, vector) in enumerate(zip(pieces, vectors))
        ]
