"""Chunk record storage using psycopg3."""

import asyncio
import json
import logging
from typing import List, Sequence

from psycopg import Connection
from psycopg_pool import ConnectionPool

from archrag.domain.chunk import Chunk
from archrag.storage.base import ChunkStore

logger = logging.getLogger(__name__)

_COLUMNS = (
    "chunk_hash, project_id, file_path, start_line, end_line, token_count, language, "
    "text_hash, semantic_type, semantic_name, chunk_index, total_chunks, content, "
    "embedding, embedding_model, embedded_at"
)


class PgChunkStore(ChunkStore):
    """Chunk record storage adapter.

    Stores one row per (project, chunk hash) so incremental runs can diff the
    current hash set against what is already indexed.
    """

    def __init__(self, database_url: str, table_name: str = "archrag_chunks"):
        """Initialize PgChunkStore.

        Args:
            database_url: PostgreSQL connection URL
            table_name: Table to store chunk records in
        """
        self._database_url = database_url
        self._table_name = table_name
        self._pool: ConnectionPool | None = None

    async def initialize(self) -> None:
        """Initialize connection pool and create table if needed."""
        await asyncio.to_thread(self._initialize)

    def _initialize(self) -> None:
        self._pool = ConnectionPool(
            conninfo=self._database_url,
            min_size=1,
            max_size=10,
            open=False,
        )

        self._pool.open()

        with self._pool.connection() as conn:
            self._create_table(conn)

    def _create_table(self, conn: Connection) -> None:
        """Create the chunk table if it doesn't exist."""
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self._table_name} (
                project_id VARCHAR(255) NOT NULL,
                chunk_hash VARCHAR(64) NOT NULL,
                file_path VARCHAR(1024) NOT NULL,
                start_line INTEGER NOT NULL,
                end_line INTEGER NOT NULL,
                token_count INTEGER NOT NULL,
                language VARCHAR(64) NOT NULL,
                text_hash VARCHAR(64) NOT NULL,
                semantic_type VARCHAR(64) NOT NULL DEFAULT 'file',
                semantic_name VARCHAR(512) NOT NULL DEFAULT '',
                chunk_index INTEGER NOT NULL DEFAULT 0,
                total_chunks INTEGER NOT NULL DEFAULT 1,
                content TEXT,
                embedding JSONB,
                embedding_model VARCHAR(255),
                embedded_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                PRIMARY KEY (project_id, chunk_hash)
            )
        """)

    async def close(self) -> None:
        """Close connection pool."""
        if self._pool:
            await asyncio.to_thread(self._pool.close)

    def _require_pool(self) -> ConnectionPool:
        if not self._pool:
            raise RuntimeError("PgChunkStore not initialized")
        return self._pool

    async def get_hashes(self, project_id: str) -> set[str]:
        """Get stored chunk hashes for a project.

        Args:
            project_id: Project identifier

        Returns:
            Set of chunk hashes (empty if none)
        """
        pool = self._require_pool()
        return await asyncio.to_thread(self._get_hashes, pool, project_id)

    def _get_hashes(self, pool: ConnectionPool, project_id: str) -> set[str]:
        with pool.connection() as conn:
            rows = conn.execute(
                f"SELECT chunk_hash FROM {self._table_name} WHERE project_id = %s",
                (project_id,),
            ).fetchall()
        return {row[0] for row in rows}

    async def get_by_project(self, project_id: str) -> List[Chunk]:
        pool = self._require_pool()
        return await asyncio.to_thread(self._get_by_project, pool, project_id)

    def _get_by_project(self, pool: ConnectionPool, project_id: str) -> List[Chunk]:
        with pool.connection() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM {self._table_name} "
                "WHERE project_id = %s ORDER BY file_path, start_line",
                (project_id,),
            ).fetchall()

        return [
            Chunk(
                chunk_hash=row[0],
                project_id=row[1],
                file_path=row[2],
                start_line=row[3],
                end_line=row[4],
                token_count=row[5],
                language=row[6],
                text_hash=row[7],
                semantic_type=row[8],
                semantic_name=row[9],
                chunk_index=row[10],
                total_chunks=row[11],
                content=row[12],
                embedding=row[13],
                embedding_model=row[14],
                embedded_at=row[15],
            )
            for row in rows
        ]

    async def add_range(self, chunks: Sequence[Chunk]) -> None:
        """Insert or replace chunk records.

        Args:
            chunks: Chunks to store
        """
        if not chunks:
            return
        pool = self._require_pool()
        await asyncio.to_thread(self._add_range, pool, list(chunks))

    def _add_range(self, pool: ConnectionPool, chunks: List[Chunk]) -> None:
        placeholders = ", ".join(["%s"] * 16)
        with pool.connection() as conn:
            with conn.cursor() as cur:
                cur.executemany(
                    f"""
                    INSERT INTO {self._table_name} ({_COLUMNS})
                    VALUES ({placeholders})
                    ON CONFLICT (project_id, chunk_hash) DO UPDATE SET
                        content = EXCLUDED.content,
                        embedding = EXCLUDED.embedding,
                        embedding_model = EXCLUDED.embedding_model,
                        embedded_at = EXCLUDED.embedded_at
                    """,
                    [
                        (
                            c.chunk_hash,
                            c.project_id,
                            c.file_path,
                            c.start_line,
                            c.end_line,
                            c.token_count,
                            c.language,
                            c.text_hash,
                            c.semantic_type,
                            c.semantic_name,
                            c.chunk_index,
                            c.total_chunks,
                            c.content,
                            json.dumps(c.embedding) if c.embedding is not None else None,
                            c.embedding_model,
                            c.embedded_at,
                        )
                        for c in chunks
                    ],
                )
            conn.commit()
        logger.debug("Stored %d chunk records in %s", len(chunks), self._table_name)

    async def delete_by_project(self, project_id: str) -> None:
        """Delete every chunk record of a project.

        Args:
            project_id: Project identifier
        """
        pool = self._require_pool()
        await asyncio.to_thread(self._delete_by_project, pool, project_id)

    def _delete_by_project(self, pool: ConnectionPool, project_id: str) -> None:
        with pool.connection() as conn:
            conn.execute(
                f"DELETE FROM {self._table_name} WHERE project_id = %s",
                (project_id,),
            )

    async def count(self, project_id: str) -> int:
        pool = self._require_pool()
        return await asyncio.to_thread(self._count, pool, project_id)

    def _count(self, pool: ConnectionPool, project_id: str) -> int:
        with pool.connection() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) FROM {self._table_name} WHERE project_id = %s",
                (project_id,),
            ).fetchone()
        return int(row[0])
