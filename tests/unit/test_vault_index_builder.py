"""Unit tests for VaultIndexBuilder -- directory of notes into one store."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from tests.conftest import InMemoryVectorStore, KeywordEmbeddingProvider
from vaultrag.services.ingestion.vault_index_builder import (
    IndexManifest,
    VaultIndexBuilder,
    file_hash,
)
from vaultrag.utils.errors import EmbeddingProviderError

_RUNBOOK = (
    "# Recovery\n"
    "Our RTO is four hours and recovery drills run every quarter without fail.\n"
    "## Tiny\n"
    "too short\n"
    "## Backups\n"
    "Backups are encrypted, copied off-site nightly, and kept for thirty days.\n"
)


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    (tmp_path / "runbook.md").write_text(_RUNBOOK, encoding="utf-8")
    (tmp_path / "breach.txt").write_text(
        "Breach notification goes to every affected customer within seventy-two hours.",
        encoding="utf-8",
    )
    (tmp_path / "diagram.png").write_bytes(b"\x89PNG")
    return tmp_path


class TestBuild:
    @pytest.mark.asyncio
    async def test_indexes_sections_per_file(
        self,
        vault: Path,
        embedding_provider: KeywordEmbeddingProvider,
        memory_store: InMemoryVectorStore,
    ) -> None:
        builder = VaultIndexBuilder(embedding_provider, memory_store)

        results = await builder.build(vault, "alice")

        assert [(r.source, r.fragment_count) for r in results] == [
            ("breach.txt", 1),
            ("runbook.md", 2),
        ]
        runbook = sorted(
            (f for f in memory_store.fragments.values() if f.source == "runbook.md"),
            key=lambda f: f.metadata.chunk_index,
        )
        assert [f.id for f in runbook] == ["alice/runbook.md-0", "alice/runbook.md-1"]
        assert [f.metadata.title for f in runbook] == ["Recovery", "Backups"]
        assert all(f.metadata.extra == {"sourceType": "vault"} for f in runbook)

        # Title is embedded together with the section body, in one batch.
        assert len(embedding_provider.calls) == 1
        assert embedding_provider.calls[0][1].startswith("Recovery\n# Recovery\n")

    @pytest.mark.asyncio
    async def test_rebuild_does_not_duplicate(
        self,
        vault: Path,
        embedding_provider: KeywordEmbeddingProvider,
        memory_store: InMemoryVectorStore,
    ) -> None:
        builder = VaultIndexBuilder(embedding_provider, memory_store)

        await builder.build(vault, "alice")
        await builder.build(vault, "alice")

        assert len(memory_store.fragments) == 3

    @pytest.mark.asyncio
    async def test_empty_directory(
        self,
        tmp_path: Path,
        embedding_provider: KeywordEmbeddingProvider,
        memory_store: InMemoryVectorStore,
    ) -> None:
        assert await VaultIndexBuilder(embedding_provider, memory_store).build(tmp_path, "alice") == []
        assert embedding_provider.calls == []

    @pytest.mark.asyncio
    async def test_missing_directory(
        self,
        tmp_path: Path,
        embedding_provider: KeywordEmbeddingProvider,
        memory_store: InMemoryVectorStore,
    ) -> None:
        with pytest.raises(FileNotFoundError):
            await VaultIndexBuilder(embedding_provider, memory_store).build(tmp_path / "nope", "alice")

    @pytest.mark.asyncio
    async def test_embedding_failure_writes_nothing(
        self, vault: Path, memory_store: InMemoryVectorStore
    ) -> None:
        provider = KeywordEmbeddingProvider()
        provider.embed = AsyncMock(  # type: ignore[method-assign]
            side_effect=EmbeddingProviderError(message="down")
        )

        with pytest.raises(EmbeddingProviderError):
            await VaultIndexBuilder(provider, memory_store).build(vault, "alice")
        assert memory_store.fragments == {}


class TestIncremental:
    @pytest.mark.asyncio
    async def test_first_run_indexes_everything_and_writes_manifest(
        self,
        vault: Path,
        tmp_path: Path,
        embedding_provider: KeywordEmbeddingProvider,
        memory_store: InMemoryVectorStore,
    ) -> None:
        manifest = IndexManifest(tmp_path / "state" / "index-manifest.json")
        builder = VaultIndexBuilder(embedding_provider, memory_store)

        report = await builder.build_incremental(vault, "alice", manifest)

        assert [r.source for r in report.indexed] == ["breach.txt", "runbook.md"]
        assert report.unchanged == []
        assert report.removed == []
        entries = {e.filename: e for e in manifest.load()}
        assert set(entries) == {"breach.txt", "runbook.md"}
        assert entries["runbook.md"].chunk_count == 2
        assert entries["runbook.md"].hash == file_hash((vault / "runbook.md").read_bytes())

        stored = json.loads(manifest.path.read_text(encoding="utf-8"))
        assert {"filename", "ownerId", "hash", "indexedAt", "chunkCount"} <= set(stored["files"][0])

    @pytest.mark.asyncio
    async def test_unchanged_files_are_not_embedded_again(
        self,
        vault: Path,
        tmp_path: Path,
        embedding_provider: KeywordEmbeddingProvider,
        memory_store: InMemoryVectorStore,
    ) -> None:
        manifest = IndexManifest(tmp_path / "index-manifest.json")
        builder = VaultIndexBuilder(embedding_provider, memory_store)
        await builder.build_incremental(vault, "alice", manifest)
        calls_after_first = len(embedding_provider.calls)

        report = await builder.build_incremental(vault, "alice", manifest)

        assert report.indexed == []
        assert report.unchanged == ["breach.txt", "runbook.md"]
        assert len(embedding_provider.calls) == calls_after_first
        assert len(memory_store.fragments) == 3

    @pytest.mark.asyncio
    async def test_changed_file_reembedded_alone(
        self,
        vault: Path,
        tmp_path: Path,
        embedding_provider: KeywordEmbeddingProvider,
        memory_store: InMemoryVectorStore,
    ) -> None:
        manifest = IndexManifest(tmp_path / "index-manifest.json")
        builder = VaultIndexBuilder(embedding_provider, memory_store)
        await builder.build_incremental(vault, "alice", manifest)

        (vault / "breach.txt").write_text(
            "Breach notification now goes out within forty-eight hours of confirmation.",
            encoding="utf-8",
        )
        report = await builder.build_incremental(vault, "alice", manifest)

        assert [r.source for r in report.indexed] == ["breach.txt"]
        assert report.unchanged == ["runbook.md"]
        assert len(embedding_provider.calls[-1]) == 1
        assert "forty-eight" in embedding_provider.calls[-1][0]
        breach = [f for f in memory_store.fragments.values() if f.source == "breach.txt"]
        assert [f.content for f in breach] == [(vault / "breach.txt").read_text(encoding="utf-8")]

    @pytest.mark.asyncio
    async def test_deleted_file_removed_from_store_and_manifest(
        self,
        vault: Path,
        tmp_path: Path,
        embedding_provider: KeywordEmbeddingProvider,
        memory_store: InMemoryVectorStore,
    ) -> None:
        manifest = IndexManifest(tmp_path / "index-manifest.json")
        builder = VaultIndexBuilder(embedding_provider, memory_store)
        await builder.build_incremental(vault, "alice", manifest)

        (vault / "runbook.md").unlink()
        report = await builder.build_incremental(vault, "alice", manifest)

        assert report.removed == ["runbook.md"]
        assert {f.source for f in memory_store.fragments.values()} == {"breach.txt"}
        assert [e.filename for e in manifest.load()] == ["breach.txt"]

    @pytest.mark.asyncio
    async def test_other_owners_entries_kept(
        self,
        vault: Path,
        tmp_path: Path,
        embedding_provider: KeywordEmbeddingProvider,
        memory_store: InMemoryVectorStore,
    ) -> None:
        manifest = IndexManifest(tmp_path / "index-manifest.json")
        builder = VaultIndexBuilder(embedding_provider, memory_store)
        await builder.build_incremental(vault, "bob", manifest)

        report = await builder.build_incremental(vault, "alice", manifest)

        assert len(report.indexed) == 2
        owners = {(e.owner_id, e.filename) for e in manifest.load()}
        assert ("bob", "runbook.md") in owners
        assert ("alice", "runbook.md") in owners

    @pytest.mark.asyncio
    async def test_unreadable_manifest_means_full_run(
        self,
        vault: Path,
        tmp_path: Path,
        embedding_provider: KeywordEmbeddingProvider,
        memory_store: InMemoryVectorStore,
    ) -> None:
        path = tmp_path / "index-manifest.json"
        path.write_text("{not json", encoding="utf-8")

        report = await VaultIndexBuilder(embedding_provider, memory_store).build_incremental(
            vault, "alice", IndexManifest(path)
        )

        assert len(report.indexed) == 2

    @pytest.mark.asyncio
    async def test_embedding_failure_leaves_manifest_unwritten(
        self, vault: Path, tmp_path: Path, memory_store: InMemoryVectorStore
    ) -> None:
        provider = KeywordEmbeddingProvider()
        provider.embed = AsyncMock(  # type: ignore[method-assign]
            side_effect=EmbeddingProviderError(message="down")
        )
        manifest = IndexManifest(tmp_path / "index-manifest.json")

        with pytest.raises(EmbeddingProviderError):
            await VaultIndexBuilder(provider, memory_store).build_incremental(
                vault, "alice", manifest
            )
        assert not manifest.path.exists()
        assert memory_store.fragments == {}
