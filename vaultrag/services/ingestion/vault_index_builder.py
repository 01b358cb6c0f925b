"""Batch indexer for a directory of markdown / text notes.

Reads every ``.md`` and ``.txt`` file in a directory, splits each one into
heading-delimited sections, embeds ``"{title}\\n{content}"`` for every
section and writes the result to a fragment store (normally the flat-file
index).  Files are processed in name order; fragments for each processed
filename replace whatever that owner had stored for it before, and files not
in this run are left alone.

Fragment ids are ``{owner}/{filename}-{n}`` so rebuilding the same
directory overwrites rather than accumulates.

:meth:`VaultIndexBuilder.build_incremental` keeps an :class:`IndexManifest`
of sha256 file hashes.  Only new or changed files are re-embedded, and
fragments of files that have left the directory are deleted.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from vaultrag.models.rag import (
    Fragment,
    FragmentMetadata,
    IngestResult,
    ManifestEntry,
    VaultIndexReport,
)
from vaultrag.services.ingestion.chunker import MarkdownSection, TextChunker
from vaultrag.utils.errors import EmbeddingProviderError, StorageError

if TYPE_CHECKING:
    from vaultrag.interfaces.embedding_provider import IEmbeddingProvider
    from vaultrag.interfaces.vector_store_provider import IVectorStoreProvider

logger = structlog.get_logger(logger_name=__name__)

VAULT_EXTENSIONS = (".md", ".markdown", ".txt")


def file_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


# ---------------------------------------------------------------------------
# IndexManifest -- filename -> hash record kept beside the flat-file index.
# ---------------------------------------------------------------------------
class IndexManifest:
    """JSON manifest of the note files already indexed, per owner.

    File layout::

        {"lastRun": "<iso>", "files": [{"filename", "ownerId", "hash",
                                        "indexedAt", "chunkCount"}, ...]}

    A missing or unreadable manifest reads as empty, which makes the next
    incremental run a full one.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[ManifestEntry]:
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("index_manifest_unreadable", path=str(self._path), error=str(exc))
            return []

        entries: list[ManifestEntry] = []
        files = payload.get("files", []) if isinstance(payload, dict) else []
        for raw in files:
            try:
                entries.append(ManifestEntry.model_validate(raw))
            except ValidationError:
                logger.warning("index_manifest_entry_skipped", path=str(self._path))
        return entries

    def save(self, entries: list[ManifestEntry]) -> None:
        """Atomically rewrite the manifest with *entries*."""
        payload: dict[str, Any] = {
            "lastRun": datetime.now(tz=timezone.utc).isoformat(),
            "files": [
                e.model_dump(mode="json", by_alias=True)
                for e in sorted(entries, key=lambda e: (e.owner_id, e.filename))
            ],
        }
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise StorageError(
                message=f"Cannot write index manifest {self._path}: {exc}",
                provider_name="index_manifest",
            ) from exc


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------
class VaultIndexBuilder:
    """Builds fragments for a directory of notes and writes them to one store."""

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        store: IVectorStoreProvider,
        min_section_chars: int = 50,
        window_chars: int = 2000,
    ) -> None:
        self._embedding_provider = embedding_provider
        self._store = store
        self._min_section_chars = min_section_chars
        self._window_chars = window_chars

    async def build(self, directory: str | Path, owner_id: str) -> list[IngestResult]:
        """Index every note file in *directory* for *owner_id*.

        Everything is embedded before anything is written, so an embedding
        failure leaves the store untouched.

        Returns
        -------
        list[IngestResult]
            One entry per file that produced at least one section.
        """
        if not owner_id:
            raise ValueError("owner_id must be a non-empty string")

        root = Path(directory)
        files = await asyncio.to_thread(self._collect_files, root)
        logger.info("vault_index_started", directory=str(root), files=len(files))

        per_file: list[tuple[str, list[MarkdownSection]]] = []
        for path in files:
            data = await asyncio.to_thread(path.read_bytes)
            sections = self._sections(path.name, data)
            if sections:
                per_file.append((path.name, sections))

        if not per_file:
            logger.info("vault_index_empty", directory=str(root))
            return []

        results = await self._embed_and_write(per_file, owner_id)
        logger.info(
            "vault_index_complete",
            directory=str(root),
            files=len(results),
            fragments=sum(r.fragment_count for r in results),
            store=self._store.get_provider_name(),
        )
        return results

    async def build_incremental(
        self,
        directory: str | Path,
        owner_id: str,
        manifest: IndexManifest,
    ) -> VaultIndexReport:
        """Re-index only the files whose content changed since the last run.

        New or changed files (by sha256) are re-embedded and replace their
        old fragments.  Files listed in the manifest for *owner_id* but no
        longer in *directory* have their fragments deleted.  The manifest is
        saved only after every store write succeeded.
        """
        if not owner_id:
            raise ValueError("owner_id must be a non-empty string")

        root = Path(directory)
        files = await asyncio.to_thread(self._collect_files, root)
        entries = await asyncio.to_thread(manifest.load)
        known = {e.filename: e for e in entries if e.owner_id == owner_id}
        others = [e for e in entries if e.owner_id != owner_id]

        now = datetime.now(tz=timezone.utc)
        unchanged: list[str] = []
        changed: list[tuple[str, list[MarkdownSection]]] = []
        emptied: list[str] = []
        kept: list[ManifestEntry] = []
        for path in files:
            data = await asyncio.to_thread(path.read_bytes)
            digest = file_hash(data)
            previous = known.get(path.name)
            if previous is not None and previous.hash == digest:
                unchanged.append(path.name)
                kept.append(previous)
                continue
            sections = self._sections(path.name, data)
            if sections:
                changed.append((path.name, sections))
            else:
                emptied.append(path.name)
            kept.append(
                ManifestEntry(
                    filename=path.name,
                    owner_id=owner_id,
                    hash=digest,
                    indexed_at=now,
                    chunk_count=len(sections),
                )
            )

        present = {p.name for p in files}
        removed = sorted(name for name in known if name not in present)
        logger.info(
            "vault_incremental_started",
            directory=str(root),
            changed=len(changed) + len(emptied),
            unchanged=len(unchanged),
            removed=len(removed),
        )

        indexed = await self._embed_and_write(changed, owner_id) if changed else []
        for filename in [*emptied, *removed]:
            await self._store.delete_by_source(filename, owner_id=owner_id)

        await asyncio.to_thread(manifest.save, [*others, *kept])

        report = VaultIndexReport(indexed=indexed, unchanged=unchanged, removed=removed)
        logger.info(
            "vault_incremental_complete",
            directory=str(root),
            indexed=len(report.indexed),
            fragments=report.fragment_count,
            unchanged=len(report.unchanged),
            removed=len(report.removed),
            store=self._store.get_provider_name(),
        )
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _sections(self, filename: str, data: bytes) -> list[MarkdownSection]:
        sections = TextChunker.chunk_markdown_sections(
            filename,
            data.decode("utf-8"),
            min_chars=self._min_section_chars,
            window_chars=self._window_chars,
        )
        logger.debug("vault_file_chunked", filename=filename, sections=len(sections))
        return sections

    async def _embed_and_write(
        self,
        per_file: list[tuple[str, list[MarkdownSection]]],
        owner_id: str,
    ) -> list[IngestResult]:
        all_sections = [s for _, sections in per_file for s in sections]
        vectors = await self._embedding_provider.embed(
            [f"{s.title}\n{s.content}" for s in all_sections]
        )
        if len(vectors) != len(all_sections):
            raise EmbeddingProviderError(
                message=f"Got {len(vectors)} embeddings for {len(all_sections)} sections",
                provider_name=self._embedding_provider.get_provider_name(),
            )

        now = datetime.now(tz=timezone.utc)
        results: list[IngestResult] = []
        offset = 0
        for filename, sections in per_file:
            fragments = [
                Fragment(
                    id=f"{owner_id}/{filename}-{index}",
                    content=section.content,
                    source=filename,
                    embedding=vectors[offset + index],
                    metadata=FragmentMetadata(
                        owner_id=owner_id,
                        filename=filename,
                        chunk_index=index,
                        title=section.title,
                        extra={"sourceType": "vault"},
                    ),
                    created_at=now,
                )
                for index, section in enumerate(sections)
            ]
            offset += len(sections)
            await self._store.replace_source(owner_id, filename, fragments)
            results.append(
                IngestResult(
                    fragment_count=len(fragments),
                    preview_text=fragments[0].content[:100],
                    source=filename,
                    fragment_ids=[f.id for f in fragments],
                )
            )
        return results

    @staticmethod
    def _collect_files(root: Path) -> list[Path]:
        if not root.is_dir():
            raise FileNotFoundError(f"Not a directory: {root}")
        return sorted(
            p for p in root.iterdir() if p.is_file() and p.suffix.lower() in VAULT_EXTENSIONS
        )
