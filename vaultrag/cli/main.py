"""CLI for ingesting documents into, and querying, the vaultrag stores.

Usage::

    python -m vaultrag.cli ingest report.pdf --owner alice
    python -m vaultrag.cli search "recovery time objective" --owner alice --top-k 3
    python -m vaultrag.cli migrate
    python -m vaultrag.cli build-index ./notes --owner alice --incremental
    python -m vaultrag.cli purge --owner alice --yes
    python -m vaultrag.cli stats

Dependencies are built per command from :class:`Settings`; ``migrate`` and
``stats`` never touch the embedding API.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from vaultrag.config.settings import Settings
from vaultrag.interfaces.vector_store_provider import IVectorStoreProvider
from vaultrag.providers.embedding.openai_embedding_provider import (
    OpenAIEmbeddingProvider,
    resolve_dimension,
)
from vaultrag.providers.vector_store.json_file_provider import (
    FlatFileIndexCache,
    JsonFileVectorStoreProvider,
)
from vaultrag.providers.vector_store.pgvector_provider import PgVectorStoreProvider
from vaultrag.services.ingestion.chunker import TextChunker
from vaultrag.services.ingestion.extractor import TextExtractor, guess_media_type
from vaultrag.services.ingestion.ingestion_service import IngestionService
from vaultrag.services.ingestion.vault_index_builder import IndexManifest, VaultIndexBuilder
from vaultrag.services.search_service import SimilaritySearchService
from vaultrag.utils.errors import VaultRagError
from vaultrag.utils.logging import configure_logging

# ---------------------------------------------------------------------------
# Dependency construction
# ---------------------------------------------------------------------------


def _build_embedding_provider(app_settings: Settings) -> OpenAIEmbeddingProvider | None:
    provider = OpenAIEmbeddingProvider(app_settings)
    if not provider.is_available():
        return None
    return provider


def _build_pg_store(app_settings: Settings, dimension: int) -> PgVectorStoreProvider | None:
    if not app_settings.has_primary_store():
        return None
    return PgVectorStoreProvider(
        database_url=app_settings.database_url,
        dimension=dimension,
        table=app_settings.pg_table,
        connect_timeout=app_settings.pg_connect_timeout_seconds,
        ivfflat_min_rows=app_settings.ivfflat_min_rows,
        ivfflat_lists=app_settings.ivfflat_lists,
    )


def _build_json_store(app_settings: Settings, dimension: int) -> JsonFileVectorStoreProvider:
    return JsonFileVectorStoreProvider(
        cache=FlatFileIndexCache(app_settings.vector_index_path),
        dimension=dimension,
    )


def _build_stores(app_settings: Settings, dimension: int) -> list[IVectorStoreProvider]:
    """Return every configured store, pgvector first."""
    stores: list[IVectorStoreProvider] = []
    pg_store = _build_pg_store(app_settings, dimension)
    if pg_store is not None:
        stores.append(pg_store)
    stores.append(_build_json_store(app_settings, dimension))
    return stores


def _write_stores(app_settings: Settings, stores: list[IVectorStoreProvider]) -> list[IVectorStoreProvider]:
    """Stores that ingestion writes to: all of them, unless mirroring is off."""
    if len(stores) > 1 and not app_settings.mirror_to_flat_file:
        return stores[:1]
    return stores


def _dimension(app_settings: Settings) -> int:
    # Only the model table is consulted; no API key needed.
    return resolve_dimension(app_settings)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_ingest(args: argparse.Namespace, app_settings: Settings) -> int:
    """Ingest a single PDF, DOCX or text file."""
    path = Path(args.file)
    if not path.is_file():
        print(f"Error: {path} is not a file.", file=sys.stderr)
        return 1

    media_type = args.media_type or guess_media_type(path.name)
    if media_type is None:
        print(
            f"Error: cannot infer the media type of {path.name}; pass --media-type.",
            file=sys.stderr,
        )
        return 1

    embedding_provider = _build_embedding_provider(app_settings)
    if embedding_provider is None:
        print("Error: OPENAI_API_KEY is not set.", file=sys.stderr)
        return 1

    stores = _build_stores(app_settings, embedding_provider.get_dimension())
    service = IngestionService(
        extractor=TextExtractor(),
        chunker=TextChunker(app_settings.chunk_max_chars, app_settings.chunk_overlap),
        embedding_provider=embedding_provider,
        stores=_write_stores(app_settings, stores),
        min_document_chars=app_settings.min_document_chars,
        min_fragment_chars=app_settings.min_fragment_chars,
        preview_chars=app_settings.preview_chars,
    )

    print(f"Ingesting {path.name} ({media_type}) for owner '{args.owner}'")
    data = await asyncio.to_thread(path.read_bytes)
    try:
        result = await service.ingest(data, media_type, path.name, args.owner)
    finally:
        await embedding_provider.close()

    print("\nIngestion complete:")
    print(f"  Fragments created: {result.fragment_count}")
    print(f"  First fragment:    {result.preview_text!r}")
    return 0


async def _handle_search(args: argparse.Namespace, app_settings: Settings) -> int:
    """Run a similarity search and print the ranked fragments."""
    embedding_provider = _build_embedding_provider(app_settings)
    if embedding_provider is None:
        print("Error: OPENAI_API_KEY is not set.", file=sys.stderr)
        return 1

    service = SimilaritySearchService(
        embedding_provider=embedding_provider,
        stores=_build_stores(app_settings, embedding_provider.get_dimension()),
        relevance_threshold=app_settings.relevance_threshold,
        default_top_k=app_settings.search_default_top_k,
        max_top_k=app_settings.search_max_top_k,
    )
    try:
        results = await service.search(args.query, args.owner, top_k=args.top_k)
    finally:
        await embedding_provider.close()

    if not results:
        print("No fragments above the relevance threshold.")
        return 0

    for rank, item in enumerate(results, start=1):
        print(f"{rank}. [{item.score:.3f}] {item.title} ({item.source})")
        print(f"   {item.content[:200]}")
    return 0


async def _handle_migrate(app_settings: Settings) -> int:
    """Create the pgvector schema and (re)build the ANN index."""
    store = _build_pg_store(app_settings, _dimension(app_settings))
    if store is None:
        print("Error: DATABASE_URL is not set; nothing to migrate.", file=sys.stderr)
        return 1

    await store.ensure_schema()
    index_kind = await store.build_index()
    print(f"Schema ready on table '{app_settings.pg_table}', index type: {index_kind}")
    return 0


async def _handle_build_index(args: argparse.Namespace, app_settings: Settings) -> int:
    """Index a directory of markdown / text notes into the flat-file store."""
    embedding_provider = _build_embedding_provider(app_settings)
    if embedding_provider is None:
        print("Error: OPENAI_API_KEY is not set.", file=sys.stderr)
        return 1

    builder = VaultIndexBuilder(
        embedding_provider=embedding_provider,
        store=_build_json_store(app_settings, embedding_provider.get_dimension()),
        min_section_chars=app_settings.min_document_chars,
        window_chars=app_settings.vault_window_chars,
    )
    try:
        if args.incremental:
            report = await builder.build_incremental(
                args.directory, args.owner, IndexManifest(app_settings.index_manifest_path)
            )
        else:
            results = await builder.build(args.directory, args.owner)
    finally:
        await embedding_provider.close()

    if args.incremental:
        print(
            f"Indexed {len(report.indexed)} new/changed files ({report.fragment_count} sections), "
            f"{len(report.unchanged)} unchanged, {len(report.removed)} removed"
        )
        for result in report.indexed:
            print(f"  {result.source:<40} {result.fragment_count}")
        for name in report.removed:
            print(f"  {name:<40} removed")
        return 0

    total = sum(r.fragment_count for r in results)
    print(f"Indexed {len(results)} files ({total} sections) into {app_settings.vector_index_path}")
    for result in results:
        print(f"  {result.source:<40} {result.fragment_count}")
    return 0


async def _handle_purge(args: argparse.Namespace, app_settings: Settings) -> int:
    """Delete fragments by owner or by source from every configured store.

    Destructive; asks for confirmation unless ``--yes`` is passed.
    """
    target = f"owner '{args.owner}'" if args.source is None else f"source '{args.source}'"
    if args.source is not None and args.owner is not None:
        target += f" (owner '{args.owner}')"

    if not args.yes:
        confirm = input(f"Delete all fragments for {target}? [y/N] ").strip().lower()
        if confirm not in ("y", "yes"):
            print("Aborted.")
            return 0

    for store in _build_stores(app_settings, _dimension(app_settings)):
        if args.source is not None:
            deleted = await store.delete_by_source(args.source, owner_id=args.owner)
        else:
            deleted = await store.delete_by_owner(args.owner)
        print(f"  {store.get_provider_name():<12} deleted {deleted}")
    return 0


async def _handle_stats(app_settings: Settings) -> int:
    """Display per-store corpus statistics."""
    print("Corpus Statistics")
    print("=" * 40)
    for store in _build_stores(app_settings, _dimension(app_settings)):
        stats = await store.get_stats()
        print(f"  [{stats.provider}]")
        print(f"    Fragments: {stats.total_fragments}")
        print(f"    Sources:   {stats.total_sources}")
        print(f"    Owners:    {stats.total_owners}")
    return 0


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the vaultrag CLI."""
    parser = argparse.ArgumentParser(
        prog="vaultrag",
        description="Manage the vaultrag fragment stores.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # -- ingest --
    ingest_parser = subparsers.add_parser("ingest", help="Ingest a PDF, DOCX or text file")
    ingest_parser.add_argument("file", help="Path to the document")
    ingest_parser.add_argument("--owner", required=True, help="Owner id to file it under")
    ingest_parser.add_argument(
        "--media-type",
        dest="media_type",
        default=None,
        help="Override the media type inferred from the file extension",
    )

    # -- search --
    search_parser = subparsers.add_parser("search", help="Search an owner's fragments")
    search_parser.add_argument("query", help="Natural-language query")
    search_parser.add_argument("--owner", required=True, help="Owner id to search within")
    search_parser.add_argument("--top-k", dest="top_k", type=int, default=None)

    # -- migrate --
    subparsers.add_parser("migrate", help="Create the pgvector schema and ANN index")

    # -- build-index --
    build_parser = subparsers.add_parser(
        "build-index", help="Index a directory of markdown / text notes"
    )
    build_parser.add_argument("directory", help="Directory of .md / .txt files")
    build_parser.add_argument("--owner", required=True, help="Owner id to file notes under")
    build_parser.add_argument(
        "--incremental",
        action="store_true",
        help="Re-embed only new or changed files; drop entries for deleted ones",
    )

    # -- purge --
    purge_parser = subparsers.add_parser("purge", help="Delete fragments by owner or source")
    purge_parser.add_argument("--owner", default=None, help="Owner whose fragments to delete")
    purge_parser.add_argument("--source", default=None, help="Source filename to delete")
    purge_parser.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")

    # -- stats --
    subparsers.add_parser("stats", help="Show per-store statistics")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Parses the subcommand, loads :class:`Settings` from the environment and
    dispatches to the matching handler.  Domain errors are printed and turn
    into exit code 1.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "purge" and args.owner is None and args.source is None:
        parser.error("purge needs --owner or --source")

    app_settings = Settings()
    configure_logging(log_level=app_settings.log_level, json_output=False)

    if args.command == "ingest":
        coro = _handle_ingest(args, app_settings)
    elif args.command == "search":
        coro = _handle_search(args, app_settings)
    elif args.command == "migrate":
        coro = _handle_migrate(app_settings)
    elif args.command == "build-index":
        coro = _handle_build_index(args, app_settings)
    elif args.command == "purge":
        coro = _handle_purge(args, app_settings)
    else:
        coro = _handle_stats(app_settings)

    try:
        exit_code = asyncio.run(coro)
    except (VaultRagError, FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
