"""PostgreSQL + pgvector fragment store provider.

Stores each fragment as one row with a native ``vector(N)`` column and a
JSONB metadata column.  Cosine distance is computed server-side with the
``<=>`` operator and the owner filter is part of the SQL ``WHERE`` clause,
so another tenant's vectors are never scanned into the process.

One short-lived async connection is opened per call; pooling is left to
PgBouncer or whatever sits in front of the database.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import psycopg
import structlog
from pgvector.psycopg import register_vector_async
from psycopg import sql
from psycopg.types.json import Jsonb

from vaultrag.interfaces.vector_store_provider import IVectorStoreProvider
from vaultrag.models.rag import Fragment, FragmentMetadata, ScoredFragment, StoreStats
from vaultrag.utils.errors import DimensionMismatchError, StorageError

logger = structlog.get_logger(logger_name=__name__)

INDEX_HNSW = "hnsw"
INDEX_IVFFLAT = "ivfflat"


class PgVectorStoreProvider(IVectorStoreProvider):
    """Fragment store backed by PostgreSQL with the pgvector extension.

    Parameters
    ----------
    database_url:
        libpq connection string.  Empty means "not configured".
    dimension:
        Fixed vector length; must match the embedding model.
    table:
        Table name holding the fragments.
    connect_timeout:
        Seconds to wait for a connection before failing over.
    ivfflat_min_rows:
        Row count at or above which :meth:`build_index` builds IVFFlat
        instead of HNSW.
    ivfflat_lists:
        ``lists`` parameter for the IVFFlat index.
    """

    def __init__(
        self,
        database_url: str,
        dimension: int,
        table: str = "document_fragments",
        connect_timeout: int = 10,
        ivfflat_min_rows: int = 10,
        ivfflat_lists: int = 10,
    ) -> None:
        self._database_url = database_url
        self._dimension = dimension
        self._table = table
        self._connect_timeout = connect_timeout
        self._ivfflat_min_rows = ivfflat_min_rows
        self._ivfflat_lists = ivfflat_lists

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    async def _connect(self, register: bool = True) -> psycopg.AsyncConnection:
        conn = await psycopg.AsyncConnection.connect(
            self._database_url,
            connect_timeout=self._connect_timeout,
        )
        if register:
            # Teaches psycopg to send/receive numpy arrays as ``vector``.
            await register_vector_async(conn)
        return conn

    def _ident(self, suffix: str = "") -> sql.Identifier:
        return sql.Identifier(f"{self._table}{suffix}")

    def _check_dimension(self, vector: list[float]) -> None:
        if len(vector) != self._dimension:
            raise DimensionMismatchError(
                expected=self._dimension,
                actual=len(vector),
                provider_name=self.get_provider_name(),
            )

    def _storage_error(self, operation: str, exc: Exception) -> StorageError:
        logger.warning(
            "pgvector_operation_failed",
            operation=operation,
            error_type=type(exc).__name__,
        )
        return StorageError(
            message=f"pgvector {operation} failed: {exc}",
            provider_name=self.get_provider_name(),
        )

    # ------------------------------------------------------------------
    # Schema management
    # ------------------------------------------------------------------

    async def ensure_schema(self) -> None:
        """Create the extension, the fragments table and the owner index."""
        statements = [
            sql.SQL("CREATE EXTENSION IF NOT EXISTS vector"),
            sql.SQL(
                "CREATE TABLE IF NOT EXISTS {table} ("
                " id TEXT PRIMARY KEY,"
                " source TEXT NOT NULL,"
                " content TEXT NOT NULL,"
                " embedding vector({dim}) NOT NULL,"
                " metadata JSONB NOT NULL DEFAULT '{{}}'::jsonb,"
                " created_at TIMESTAMPTZ NOT NULL DEFAULT NOW())"
            ).format(table=self._ident(), dim=sql.Literal(self._dimension)),
            sql.SQL(
                "CREATE INDEX IF NOT EXISTS {index} ON {table} ((metadata->>'ownerId'))"
            ).format(index=self._ident("_owner_idx"), table=self._ident()),
            sql.SQL("CREATE INDEX IF NOT EXISTS {index} ON {table} (source)").format(
                index=self._ident("_source_idx"), table=self._ident()
            ),
        ]
        try:
            async with await self._connect(register=False) as conn:
                for statement in statements:
                    await conn.execute(statement)
        except psycopg.Error as exc:
            raise self._storage_error("ensure_schema", exc) from exc

        logger.info("pgvector_schema_ready", table=self._table, dimension=self._dimension)

    async def build_index(self) -> str:
        """(Re)build the approximate nearest-neighbour index.

        The index kind is decided once, here, from the current row count:
        HNSW below ``ivfflat_min_rows`` (needs no training data), IVFFlat
        with ``lists = ivfflat_lists`` at or above it.

        Returns
        -------
        str
            ``"hnsw"`` or ``"ivfflat"``.
        """
        index = self._ident("_embedding_idx")
        try:
            async with await self._connect() as conn:
                cur = await conn.execute(
                    sql.SQL("SELECT count(*) FROM {table}").format(table=self._ident())
                )
                row = await cur.fetchone()
                row_count = int(row[0]) if row else 0

                await conn.execute(
                    sql.SQL("DROP INDEX IF EXISTS {index}").format(index=index)
                )
                if row_count < self._ivfflat_min_rows:
                    kind = INDEX_HNSW
                    statement = sql.SQL(
                        "CREATE INDEX {index} ON {table} USING hnsw (embedding vector_cosine_ops)"
                    ).format(index=index, table=self._ident())
                else:
                    kind = INDEX_IVFFLAT
                    statement = sql.SQL(
                        "CREATE INDEX {index} ON {table} "
                        "USING ivfflat (embedding vector_cosine_ops) WITH (lists = {lists})"
                    ).format(
                        index=index,
                        table=self._ident(),
                        lists=sql.Literal(self._ivfflat_lists),
                    )
                await conn.execute(statement)
        except psycopg.Error as exc:
            raise self._storage_error("build_index", exc) from exc

        logger.info("pgvector_index_built", table=self._table, kind=kind, rows=row_count)
        return kind

    # ------------------------------------------------------------------
    # IVectorStoreProvider implementation
    # ------------------------------------------------------------------

    async def upsert(self, fragments: list[Fragment]) -> int:
        """Insert or replace fragments by id, one row per fragment."""
        if not fragments:
            return 0
        for fragment in fragments:
            self._check_dimension(fragment.embedding)

        try:
            async with await self._connect() as conn:
                async with conn.cursor() as cur:
                    await cur.executemany(self._upsert_statement(), self._upsert_params(fragments))
        except psycopg.Error as exc:
            raise self._storage_error("upsert", exc) from exc

        logger.info("pgvector_upsert", table=self._table, count=len(fragments))
        return len(fragments)

    async def replace_source(
        self,
        owner_id: str,
        source: str,
        fragments: list[Fragment],
    ) -> int:
        """Delete the owner's rows for *source* and insert *fragments* in one transaction."""
        for fragment in fragments:
            self._check_dimension(fragment.embedding)

        delete = sql.SQL(
            "DELETE FROM {table} WHERE source = %s AND metadata->>'ownerId' = %s"
        ).format(table=self._ident())

        try:
            async with await self._connect() as conn:
                async with conn.transaction():
                    async with conn.cursor() as cur:
                        await cur.execute(delete, (source, owner_id))
                        replaced = max(cur.rowcount, 0)
                        if fragments:
                            await cur.executemany(
                                self._upsert_statement(), self._upsert_params(fragments)
                            )
        except psycopg.Error as exc:
            raise self._storage_error("replace_source", exc) from exc

        logger.info(
            "pgvector_replace_source",
            table=self._table,
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
        """Nearest fragments for one owner, ascending cosine distance."""
        self._check_dimension(vector)
        if top_k <= 0:
            return []

        statement = sql.SQL(
            "SELECT id, source, content, embedding, metadata, created_at,"
            " (embedding <=> %s) AS distance"
            " FROM {table}"
            " WHERE metadata->>'ownerId' = %s"
            " ORDER BY distance"
            " LIMIT %s"
        ).format(table=self._ident())

        try:
            async with await self._connect() as conn:
                cur = await conn.execute(
                    statement,
                    (np.asarray(vector, dtype=np.float32), owner_id, top_k),
                )
                rows = await cur.fetchall()
        except psycopg.Error as exc:
            raise self._storage_error("query", exc) from exc

        results: list[ScoredFragment] = []
        skipped = 0
        for row in rows:
            try:
                results.append(self._row_to_scored(row))
            except (ValueError, TypeError) as exc:
                skipped += 1
                logger.debug("pgvector_row_malformed", id=row[0], error=str(exc))
        if skipped:
            logger.warning("pgvector_rows_skipped", table=self._table, skipped=skipped)
        logger.debug("pgvector_query", table=self._table, results=len(results), top_k=top_k)
        return results

    async def delete_by_owner(self, owner_id: str) -> int:
        statement = sql.SQL("DELETE FROM {table} WHERE metadata->>'ownerId' = %s").format(
            table=self._ident()
        )
        return await self._delete("delete_by_owner", statement, (owner_id,))

    async def delete_by_source(self, source: str, owner_id: str | None = None) -> int:
        if owner_id is None:
            statement = sql.SQL("DELETE FROM {table} WHERE source = %s").format(
                table=self._ident()
            )
            params: tuple[Any, ...] = (source,)
        else:
            statement = sql.SQL(
                "DELETE FROM {table} WHERE source = %s AND metadata->>'ownerId' = %s"
            ).format(table=self._ident())
            params = (source, owner_id)
        return await self._delete("delete_by_source", statement, params)

    async def get_stats(self) -> StoreStats:
        statement = sql.SQL(
            "SELECT count(*), count(DISTINCT source), count(DISTINCT metadata->>'ownerId')"
            " FROM {table}"
        ).format(table=self._ident())
        try:
            async with await self._connect() as conn:
                cur = await conn.execute(statement)
                row = await cur.fetchone()
        except psycopg.Error as exc:
            raise self._storage_error("get_stats", exc) from exc

        total, sources, owners = row if row else (0, 0, 0)
        return StoreStats(
            provider=self.get_provider_name(),
            total_fragments=int(total),
            total_sources=int(sources),
            total_owners=int(owners),
        )

    def get_provider_name(self) -> str:
        return "pgvector"

    def is_available(self) -> bool:
        return bool(self._database_url)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _upsert_statement(self) -> sql.Composed:
        return sql.SQL(
            "INSERT INTO {table} (id, source, content, embedding, metadata, created_at)"
            " VALUES (%s, %s, %s, %s, %s, %s)"
            " ON CONFLICT (id) DO UPDATE SET"
            " source = EXCLUDED.source,"
            " content = EXCLUDED.content,"
            " embedding = EXCLUDED.embedding,"
            " metadata = EXCLUDED.metadata,"
            " created_at = EXCLUDED.created_at"
        ).format(table=self._ident())

    @staticmethod
    def _upsert_params(fragments: list[Fragment]) -> list[tuple[Any, ...]]:
        return [
            (
                f.id,
                f.source,
                f.content,
                np.asarray(f.embedding, dtype=np.float32),
                Jsonb(f.metadata.to_storage()),
                f.created_at,
            )
            for f in fragments
        ]

    async def _delete(self, operation: str, statement: sql.Composed, params: tuple[Any, ...]) -> int:
        try:
            async with await self._connect() as conn:
                cur = await conn.execute(statement, params)
                deleted = max(cur.rowcount, 0)
        except psycopg.Error as exc:
            raise self._storage_error(operation, exc) from exc

        logger.info(f"pgvector_{operation}", table=self._table, deleted_count=deleted)
        return deleted

    @staticmethod
    def _row_to_scored(row: tuple[Any, ...]) -> ScoredFragment:
        frag_id, source, content, embedding, metadata, created_at, distance = row
        if isinstance(embedding, np.ndarray):
            embedding = embedding.tolist()
        elif hasattr(embedding, "to_list"):
            embedding = embedding.to_list()
        fragment = Fragment(
            id=frag_id,
            source=source,
            content=content,
            embedding=list(embedding),
            metadata=FragmentMetadata.from_storage(metadata or {}),
            created_at=created_at,
        )
        return ScoredFragment(fragment=fragment, distance=float(distance))
