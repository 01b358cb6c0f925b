"""Flat-file JSON fragment store provider.

The degraded fallback for environments without PostgreSQL.  All fragments
live in one JSON file holding a list of records::

    {"id": ..., "filename": ..., "title": ..., "content": ...,
     "embedding": [...], "metadata": {"ownerId": ..., ...}, "createdAt": ...}

The file is parsed once into a :class:`FlatFileIndexCache` and shared by
every query in the process.  Writes through this provider invalidate that
cache.  Writes made by another process (or by hand) are not noticed until
:meth:`FlatFileIndexCache.invalidate` is called or the process restarts,
so answers served from here may be stale.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import numpy as np
import structlog

from vaultrag.interfaces.vector_store_provider import IVectorStoreProvider
from vaultrag.models.rag import Fragment, FragmentMetadata, ScoredFragment, StoreStats
from vaultrag.utils.errors import DimensionMismatchError, StorageError

logger = structlog.get_logger(logger_name=__name__)


# ---------------------------------------------------------------------------
# FlatFileIndexCache -- an explicit, owned replacement for a module global.
# ---------------------------------------------------------------------------
class FlatFileIndexCache:
    """Lazily loaded, process-lifetime copy of the flat-file index.

    Concurrent readers share one parsed list and must treat it as read-only.
    Call :meth:`invalidate` after changing the file to force a reload.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._records: list[dict[str, Any]] | None = None
        self._lock = threading.Lock()
        # Serialises read-modify-write cycles on the file.
        self.write_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_loaded(self) -> bool:
        return self._records is not None

    def get(self) -> list[dict[str, Any]]:
        """Return the cached records, reading the file on first use."""
        with self._lock:
            if self._records is None:
                self._records = self.read_file()
                logger.info("flat_file_index_loaded", path=str(self._path), records=len(self._records))
            return self._records

    def invalidate(self) -> None:
        with self._lock:
            self._records = None

    def read_file(self) -> list[dict[str, Any]]:
        """Parse the file from disk, bypassing the cache.

        A missing file is an empty index, not an error.
        """
        if not self._path.exists():
            return []
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StorageError(
                message=f"Cannot read flat-file index {self._path}: {exc}",
                provider_name="json_file",
            ) from exc
        if not isinstance(payload, list):
            raise StorageError(
                message=f"Flat-file index {self._path} is not a JSON list",
                provider_name="json_file",
            )
        return [r for r in payload if isinstance(r, dict)]

    def write_file(self, records: list[dict[str, Any]]) -> None:
        """Atomically replace the file with *records* and drop the cache."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(records, handle, ensure_ascii=False)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(
                message=f"Cannot write flat-file index {self._path}: {exc}",
                provider_name="json_file",
            ) from exc
        self.invalidate()


# ---------------------------------------------------------------------------
# Record <-> Fragment conversion
# ---------------------------------------------------------------------------

def _record_owner(record: dict[str, Any]) -> str | None:
    metadata = record.get("metadata")
    if isinstance(metadata, dict) and metadata.get("ownerId"):
        return str(metadata["ownerId"])
    if record.get("ownerId"):
        return str(record["ownerId"])
    return None


def fragment_to_record(fragment: Fragment) -> dict[str, Any]:
    """Serialise a fragment in the flat-file record layout."""
    return {
        "id": fragment.id,
        "filename": fragment.source,
        "title": fragment.metadata.title or fragment.source,
        "content": fragment.content,
        "embedding": list(fragment.embedding),
        "metadata": fragment.metadata.to_storage(),
        "createdAt": fragment.created_at.isoformat(),
    }


def record_to_fragment(record: dict[str, Any]) -> Fragment:
    """Rebuild a :class:`Fragment` from a flat-file record."""
    metadata = dict(record.get("metadata") or {})
    metadata["ownerId"] = _record_owner(record) or ""
    metadata.setdefault("filename", record.get("filename", ""))
    if record.get("title") and "title" not in metadata:
        metadata["title"] = record["title"]

    created_raw = record.get("createdAt")
    created_at = (
        datetime.fromisoformat(created_raw)
        if isinstance(created_raw, str)
        else datetime.fromtimestamp(0, tz=timezone.utc)
    )
    return Fragment(
        id=str(record["id"]),
        content=str(record["content"]),
        source=str(record.get("filename", "")),
        embedding=[float(v) for v in record["embedding"]],
        metadata=FragmentMetadata.from_storage(metadata),
        created_at=created_at,
    )


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------
class JsonFileVectorStoreProvider(IVectorStoreProvider):
    """Fragment store backed by a single JSON file and brute-force cosine.

    Parameters
    ----------
    cache:
        The :class:`FlatFileIndexCache` for the index file.  Share one cache
        between every component in a process that touches the same file.
    dimension:
        Fixed vector length; records of any other length are never compared.
    """

    def __init__(self, cache: FlatFileIndexCache, dimension: int) -> None:
        self._cache = cache
        self._dimension = dimension

    @property
    def cache(self) -> FlatFileIndexCache:
        return self._cache

    # ------------------------------------------------------------------
    # IVectorStoreProvider implementation
    # ------------------------------------------------------------------

    async def upsert(self, fragments: list[Fragment]) -> int:
        """Replace records by id (in place) or append new ones, then rewrite the file."""
        if not fragments:
            return 0
        for fragment in fragments:
            self._check_dimension(len(fragment.embedding))

        new_records = [fragment_to_record(f) for f in fragments]
        await asyncio.to_thread(self._upsert_sync, new_records)
        logger.info("json_file_upsert", path=str(self._cache.path), count=len(fragments))
        return len(fragments)

    async def replace_source(
        self,
        owner_id: str,
        source: str,
        fragments: list[Fragment],
    ) -> int:
        """Drop the owner's records for *source* and append *fragments* in one rewrite."""
        for fragment in fragments:
            self._check_dimension(len(fragment.embedding))

        new_records = [fragment_to_record(f) for f in fragments]
        replaced = await asyncio.to_thread(self._replace_sync, owner_id, source, new_records)
        logger.info(
            "json_file_replace_source",
            path=str(self._cache.path),
            owner_id=owner_id,
            source=source,
            replaced=replaced,
            count=len(fragments),
        )
        return len(fragments)

    async def query(
        self,
        owner_id: str,
        vector: list[float],
        top_k: int,
    ) -> list[ScoredFragment]:
        """Cosine scan over the owner's cached records, nearest first."""
        self._check_dimension(len(vector))
        if top_k <= 0:
            return []

        records = await asyncio.to_thread(self._cache.get)
        candidates: list[Fragment] = []
        skipped = 0
        for record in records:
            # Records without an owner belong to nobody and never match.
            if _record_owner(record) != owner_id:
                continue
            embedding = record.get("embedding")
            if (
                not isinstance(embedding, list)
                or len(embedding) != self._dimension
                or not record.get("id")
                or not str(record.get("content", "")).strip()
            ):
                skipped += 1
                continue
            try:
                candidates.append(record_to_fragment(record))
            except (ValueError, TypeError) as exc:
                # pydantic's ValidationError is a ValueError.
                skipped += 1
                logger.debug("json_file_record_malformed", id=record.get("id"), error=str(exc))

        if skipped:
            logger.warning(
                "json_file_records_skipped",
                path=str(self._cache.path),
                skipped=skipped,
                expected_dimension=self._dimension,
            )
        if not candidates:
            return []

        matrix = np.asarray([f.embedding for f in candidates], dtype=np.float64)
        similarities = cosine_similarities(np.asarray(vector, dtype=np.float64), matrix)

        # Stable sort keeps file order for equal scores.
        order = np.argsort(-similarities, kind="stable")[:top_k]
        results = [
            ScoredFragment(
                fragment=candidates[i],
                distance=float(1.0 - similarities[i]),
            )
            for i in order
        ]
        logger.debug("json_file_query", candidates=len(candidates), results=len(results))
        return results

    async def delete_by_owner(self, owner_id: str) -> int:
        return await asyncio.to_thread(
            self._delete_sync, "delete_by_owner", lambda r: _record_owner(r) == owner_id
        )

    async def delete_by_source(self, source: str, owner_id: str | None = None) -> int:
        def matches(record: dict[str, Any]) -> bool:
            if record.get("filename") != source:
                return False
            return owner_id is None or _record_owner(record) == owner_id

        return await asyncio.to_thread(self._delete_sync, "delete_by_source", matches)

    async def get_stats(self) -> StoreStats:
        records = await asyncio.to_thread(self._cache.get)
        return StoreStats(
            provider=self.get_provider_name(),
            total_fragments=len(records),
            total_sources=len({r.get("filename") for r in records}),
            total_owners=len({o for o in map(_record_owner, records) if o}),
        )

    def get_provider_name(self) -> str:
        return "json_file"

    def is_available(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # Internals (run in worker threads)
    # ------------------------------------------------------------------

    def _check_dimension(self, length: int) -> None:
        if length != self._dimension:
            raise DimensionMismatchError(
                expected=self._dimension,
                actual=length,
                provider_name=self.get_provider_name(),
            )

    def _upsert_sync(self, new_records: list[dict[str, Any]]) -> None:
        with self._cache.write_lock:
            records = self._cache.read_file()
            position = {r.get("id"): i for i, r in enumerate(records)}
            for record in new_records:
                existing = position.get(record["id"])
                if existing is None:
                    position[record["id"]] = len(records)
                    records.append(record)
                else:
                    records[existing] = record
            self._cache.write_file(records)

    def _replace_sync(
        self,
        owner_id: str,
        source: str,
        new_records: list[dict[str, Any]],
    ) -> int:
        with self._cache.write_lock:
            records = self._cache.read_file()
            new_ids = {r["id"] for r in new_records}
            kept = [
                r
                for r in records
                if r.get("id") not in new_ids
                and not (r.get("filename") == source and _record_owner(r) == owner_id)
            ]
            self._cache.write_file(kept + new_records)
        return len(records) - len(kept)

    def _delete_sync(self, operation: str, predicate) -> int:  # noqa: ANN001
        with self._cache.write_lock:
            records = self._cache.read_file()
            kept = [r for r in records if not predicate(r)]
            deleted = len(records) - len(kept)
            if deleted:
                self._cache.write_file(kept)
        logger.info(f"json_file_{operation}", path=str(self._cache.path), deleted_count=deleted)
        return deleted


def cosine_similarities(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of *query* against every row of *matrix*.

    Zero-norm rows (or a zero query) score 0.0.
    """
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0, dots / norms, 0.0)
    return scores
