"""Vector index on PostgreSQL + pgvector."""

import asyncio
import json
import logging
import re
from typing import List, Sequence

from psycopg import Connection
from psycopg_pool import ConnectionPool

from archrag.domain.vector import VectorMetadata, VectorSearchResult
from archrag.storage.base import VectorIndex, VectorItem

logger = logging.getLogger(__name__)

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _vector_literal(vector: Sequence[float]) -> str:
    return "[" + ",".join(str(float(x)) for x in vector) + "]"


def _parse_vector_dim(type_str: str) -> int | None:
    """Parse pgvector type like 'vector(768)' to dimension."""
    match = re.match(r"vector\((\d+)\)", type_str)
    if not match:
        return None
    return int(match.group(1))


class PgVectorIndex(VectorIndex):
    """pgvector-backed index, one row per (project, chunk).

    Blocking psycopg calls run in worker threads so the event loop stays free.
    """

    def __init__(
        self,
        database_url: str,
        dimension: int,
        table_name: str = "archrag_vectors",
        min_pool_size: int = 1,
        max_pool_size: int = 10,
    ):
        """Initialize PgVectorIndex.

        Args:
            database_url: PostgreSQL connection URL
            dimension: Embedding dimension of the column
            table_name: Table to store vectors in
            min_pool_size: Minimum pooled connections
            max_pool_size: Maximum pooled connections
        """
        if not _TABLE_NAME_RE.match(table_name):
            raise ValueError(f"Invalid table name: {table_name}")

        self._database_url = database_url
        self._dimension = dimension
        self._table_name = table_name
        self._min_pool_size = min_pool_size
        self._max_pool_size = max_pool_size
        self._pool: ConnectionPool | None = None

    @property
    def table_name(self) -> str:
        return self._table_name

    async def initialize(self) -> None:
        """Open the pool and create the table if needed."""
        await asyncio.to_thread(self._initialize)

    def _initialize(self) -> None:
        self._pool = ConnectionPool(
            conninfo=self._database_url,
            min_size=self._min_pool_size,
            max_size=self._max_pool_size,
            open=False,
            kwargs={"autocommit": True},
        )
        self._pool.open()

        with self._pool.connection() as conn:
            self._create_table(conn)

    def _create_table(self, conn: Connection) -> None:
        """Create vector table if it doesn't exist."""
        conn.execute("CREATE EXTENSION IF NOT EXISTS vector")

        row = conn.execute(
            """
            SELECT pg_catalog.format_type(atttypid, atttypmod)
            FROM pg_attribute
            WHERE attrelid = to_regclass(%s) AND attname = 'embedding'
            """,
            (self._table_name,),
        ).fetchone()
        if row:
            existing_dim = _parse_vector_dim(row[0])
            if existing_dim is not None and existing_dim != self._dimension:
                raise RuntimeError(
                    f"Table {self._table_name} has dimension {existing_dim}, "
                    f"but the embedding model produces {self._dimension}"
                )

        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self._table_name} (
                id BIGSERIAL PRIMARY KEY,
                project_id VARCHAR(255) NOT NULL,
                chunk_id VARCHAR(64) NOT NULL,
                metadata JSONB NOT NULL DEFAULT '{{}}',
                embedding vector({self._dimension}) NOT NULL,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                UNIQUE (project_id, chunk_id)
            )
        """)

        # ivfflat supports up to 2000 dimensions; larger vectors use hnsw
        method = (
            "ivfflat (embedding vector_cosine_ops) WITH (lists = 100)"
            if self._dimension <= 2000
            else "hnsw (embedding vector_cosine_ops) WITH (m = 16, ef_construction = 64)"
        )
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS {self._table_name}_embedding_idx "
            f"ON {self._table_name} USING {method}"
        )
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS {self._table_name}_project_idx "
            f"ON {self._table_name}(project_id)"
        )

    async def close(self) -> None:
        """Close connections."""
        if self._pool:
            await asyncio.to_thread(self._pool.close)

    def _require_pool(self) -> ConnectionPool:
        if not self._pool:
            raise RuntimeError("PgVectorIndex not initialized")
        return self._pool

    async def index(self, items: Sequence[VectorItem]) -> None:
        if not items:
            return
        pool = self._require_pool()
        await asyncio.to_thread(self._index, pool, list(items))

    def _index(self, pool: ConnectionPool, items: List[VectorItem]) -> None:
        with pool.connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.executemany(
                        f"""
                        INSERT INTO {self._table_name} (project_id, chunk_id, metadata, embedding)
                        VALUES (%s, %s, %s, %s::vector)
                        ON CONFLICT (project_id, chunk_id) DO UPDATE SET
                            metadata = EXCLUDED.metadata,
                            embedding = EXCLUDED.embedding
                        """,
                        [
                            (
                                metadata.project_id,
                                chunk_id,
                                json.dumps(metadata.to_dict()),
                                _vector_literal(vector),
                            )
                            for chunk_id, vector, metadata in items
                        ],
                    )
        logger.debug("Upserted %d vectors into %s", len(items), self._table_name)

    async def query(
        self, vector: List[float], top_k: int, project_id: str
    ) -> List[VectorSearchResult]:
        pool = self._require_pool()
        return await asyncio.to_thread(self._query, pool, vector, top_k, project_id)

    def _query(
        self, pool: ConnectionPool, vector: List[float], top_k: int, project_id: str
    ) -> List[VectorSearchResult]:
        embedding_str = _vector_literal(vector)

        # Ordering by id breaks distance ties in insertion order
        sql = f"""
            SELECT chunk_id, metadata, 1 - (embedding <=> %s::vector) AS score
            FROM {self._table_name}
            WHERE project_id = %s
            ORDER BY embedding <=> %s::vector, id
            LIMIT %s
        """

        with pool.connection() as conn:
            rows = conn.execute(sql, (embedding_str, project_id, embedding_str, top_k)).fetchall()

        return [
            VectorSearchResult(
                chunk_id=row[0],
                score=float(row[2]),
                metadata=VectorMetadata.from_dict(row[1]),
            )
            for row in rows
        ]

    async def delete_by_project(self, project_id: str) -> None:
        pool = self._require_pool()
        await asyncio.to_thread(self._execute, pool, f"DELETE FROM {self._table_name} WHERE project_id = %s", (project_id,))

    async def count(self, project_id: str) -> int:
        pool = self._require_pool()
        return await asyncio.to_thread(self._count, pool, project_id)

    def _count(self, pool: ConnectionPool, project_id: str) -> int:
        with pool.connection() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) FROM {self._table_name} WHERE project_id = %s", (project_id,)
            ).fetchone()
        return int(row[0])

    @staticmethod
    def _execute(pool: ConnectionPool, sql: str, params: tuple) -> None:
        with pool.connection() as conn:
            conn.execute(sql, params)
