"""PostgreSQL database adapter for crawlsearch.

Documents, chunks (pgvector embeddings) and crawled hosts live here. The
write path works inside ``transaction()``; the read path runs its queries on
one pooled connection from ``read_session()``.
"""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Dict, Any, Optional, Sequence, Tuple, AsyncIterator

import asyncpg

from config.settings import PostgresConfig
from services.shared.errors import StorageError
from services.shared.models import HostInfo

logger = logging.getLogger(__name__)

STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

HYBRID_SEARCH_SQL = """
WITH params AS (
    SELECT
        plainto_tsquery('english', $1) AS ts_query,
        $2::vector AS query_vec
)
SELECT
    d.id,
    d.url,
    d.title,
    d.metadata,
    dc.content AS chunk_content,
    ts_rank(d.search_vector, params.ts_query) AS text_score,
    1 - (dc.embedding <=> params.query_vec) AS vector_score
FROM params
JOIN documents d ON d.search_vector @@ params.ts_query
JOIN document_chunks dc ON dc.document_id = d.id
ORDER BY (
    $3 * ts_rank(d.search_vector, params.ts_query) +
    $4 * (1 - (dc.embedding <=> params.query_vec))
) DESC
LIMIT $5
"""

VECTOR_SEARCH_SQL = """
SELECT
    d.id,
    d.url,
    d.title,
    d.metadata,
    dc.content AS chunk_content,
    0.0::float8 AS text_score,
    1 - (dc.embedding <=> $1::vector) AS vector_score
FROM documents d
JOIN document_chunks dc ON dc.document_id = d.id
ORDER BY dc.embedding <=> $1::vector
LIMIT $2
"""


class PostgresTransaction:
    """Write operations bound to one connection inside an open transaction."""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def find_document(self, url: str) -> Optional[Dict[str, Any]]:
        """Return ``{"id", "added_at"}`` for the document at ``url``, locking the row."""
        row = await self.conn.fetchrow(
            "SELECT id, added_at FROM documents WHERE url = $1 FOR UPDATE",
            url
        )
        if row is None:
            return None
        return {"id": str(row["id"]), "added_at": row["added_at"]}

    async def insert_document(self, document_id: str, url: str, title: str, content: str,
                              metadata: Dict[str, Any], now: datetime) -> None:
        await self.conn.execute(
            """
            INSERT INTO documents (id, url, title, content, added_at, last_processed_at,
                                   metadata, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $5, $6::jsonb, $5, $5)
            """,
            uuid.UUID(document_id), url, title, content, now, json.dumps(metadata)
        )

    async def update_document(self, document_id: str, title: str, content: str,
                              metadata: Dict[str, Any], now: datetime) -> None:
        await self.conn.execute(
            """
            UPDATE documents
            SET title = $2,
                content = $3,
                last_processed_at = $4,
                metadata = $5::jsonb,
                updated_at = $4
            WHERE id = $1
            """,
            uuid.UUID(document_id), title, content, now, json.dumps(metadata)
        )

    async def delete_chunks(self, document_id: str) -> None:
        await self.conn.execute(
            "DELETE FROM document_chunks WHERE document_id = $1",
            uuid.UUID(document_id)
        )

    async def upsert_host(self, hostname: str, crawled_at: datetime) -> None:
        """Insert the host or move ``last_crawled_at`` forward; never backwards."""
        await self.conn.execute(
            """
            INSERT INTO crawled_sites (hostname, created_at, last_crawled_at)
            VALUES ($1, $2, $2)
            ON CONFLICT (hostname) DO UPDATE SET
                last_crawled_at = GREATEST(crawled_sites.last_crawled_at, EXCLUDED.last_crawled_at)
            """,
            hostname, crawled_at
        )

    async def insert_chunks(self, document_id: str, chunks: Sequence[Tuple[int, str, str]],
                            now: datetime) -> None:
        """Insert ``(chunk_index, content, vector_literal)`` rows."""
        if not chunks:
            return
        doc_uuid = uuid.UUID(document_id)
        await self.conn.executemany(
            """
            INSERT INTO document_chunks (id, document_id, chunk_index, content, embedding, created_at)
            VALUES ($1, $2, $3, $4, $5::vector, $6)
            """,
            [
                (uuid.uuid4(), doc_uuid, chunk_index, content, literal, now)
                for chunk_index, content, literal in chunks
            ]
        )


class PostgresReadSession:
    """Read-only queries sharing one pooled connection."""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def hybrid_search(self, query: str, vector_literal: str, text_weight: float,
                            vector_weight: float, limit: int) -> List[Dict[str, Any]]:
        """Chunks of lexically matching documents ordered by fused score."""
        rows = await self.conn.fetch(
            HYBRID_SEARCH_SQL,
            query, vector_literal, text_weight, vector_weight, limit
        )
        return [dict(row) for row in rows]

    async def vector_search(self, vector_literal: str, limit: int) -> List[Dict[str, Any]]:
        """Chunks ordered purely by cosine similarity, with a zero text score."""
        rows = await self.conn.fetch(VECTOR_SEARCH_SQL, vector_literal, limit)
        return [dict(row) for row in rows]


class PostgresAdapter:
    """PostgreSQL database adapter with pgvector support."""

    def __init__(self, config: PostgresConfig):
        self.config = config
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Initialize the bounded connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                dsn=self.config.dsn,
                min_size=self.config.min_connections,
                max_size=self.config.max_connections,
                command_timeout=self.config.command_timeout
            )
        except STORE_ERRORS as e:
            logger.error(f"Failed to initialize PostgreSQL: {e}")
            raise StorageError(f"Failed to connect to PostgreSQL: {e}") from e
        logger.info(
            f"PostgreSQL connection pool initialized "
            f"(min={self.config.min_connections}, max={self.config.max_connections})"
        )

    async def close(self):
        """Close connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("PostgreSQL connection pool closed")

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise StorageError("PostgreSQL pool not initialized. Call initialize() first.")
        return self.pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresTransaction]:
        """Open a transaction; commits on exit, rolls back on any exception."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    yield PostgresTransaction(conn)
        except STORE_ERRORS as e:
            raise StorageError(f"Transaction failed: {e}") from e

    @asynccontextmanager
    async def read_session(self) -> AsyncIterator[PostgresReadSession]:
        """Acquire one connection for a sequence of read queries."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                yield PostgresReadSession(conn)
        except STORE_ERRORS as e:
            raise StorageError(f"Query failed: {e}") from e

    async def list_hosts(self) -> List[HostInfo]:
        """All crawled hostnames, sorted, blanks skipped."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT hostname, last_crawled_at
                    FROM crawled_sites
                    WHERE hostname IS NOT NULL
                    ORDER BY hostname ASC
                    """
                )
        except STORE_ERRORS as e:
            raise StorageError(f"Failed to load crawled sites: {e}") from e

        hosts = []
        for row in rows:
            hostname = (row["hostname"] or "").strip()
            if hostname:
                hosts.append(HostInfo(hostname=hostname, last_crawled_at=row["last_crawled_at"]))
        return hosts
