"""Document indexing pipeline for crawlsearch.

Turns one extracted article into a document row, its host record and a fresh
set of embedded chunks, all inside a single transaction.
"""

import json
import logging
import time
import uuid
from typing import Any, Optional, Union

from pydantic import ValidationError

from indexer.embeddings import HashEmbedder, format_vector_literal
from observability.prometheus_metrics import record_indexing_metrics
from pipelines.chunker import DocumentChunker
from services.shared.errors import EmptyContent, ParseError, StorageError
from services.shared.models import ArticleRecord, IngestResult, utcnow
from services.shared.results import derive_hostname

logger = logging.getLogger(__name__)


class DocumentPipeline:
    """Chunks, embeds and upserts articles into the store.

    ``store`` must provide ``transaction()`` as an async context manager
    yielding an object with ``find_document``, ``insert_document``,
    ``update_document``, ``delete_chunks``, ``upsert_host`` and
    ``insert_chunks`` (see ``indexer.postgres_adapter.PostgresTransaction``).
    """

    def __init__(self, store: Any, chunker: DocumentChunker, embedder: HashEmbedder):
        self.store = store
        self.chunker = chunker
        self.embedder = embedder

    def parse_payload(self, payload: Union[str, bytes], source_key: str) -> ArticleRecord:
        """Decode a queued JSON payload into an ``ArticleRecord``."""
        try:
            data = json.loads(payload)
        except ValueError as e:
            raise ParseError(source_key, str(e)) from e
        if not isinstance(data, dict):
            raise ParseError(source_key, f"expected an object, got {type(data).__name__}")
        try:
            return ArticleRecord.model_validate(data)
        except ValidationError as e:
            raise ParseError(source_key, str(e)) from e

    async def ingest_payload(self, payload: Union[str, bytes], source_key: str) -> IngestResult:
        record = self.parse_payload(payload, source_key)
        return await self.ingest(record, source_key=source_key)

    async def ingest(self, record: ArticleRecord, source_key: Optional[str] = None) -> IngestResult:
        """Ingest one article.

        Re-ingesting a URL updates the existing document in place, keeps its
        first-seen timestamp and replaces all of its chunks.

        Raises:
            EmptyContent: the article text is blank
            StorageError: the transaction failed and was rolled back
        """
        start_time = time.time()

        if not record.text.strip():
            record_indexing_metrics("empty", 0, time.time() - start_time)
            raise EmptyContent(record.url)

        host = derive_hostname(record.url)
        if host.degraded:
            logger.warning(f"{host.warning}; skipping host tracking")

        now = utcnow()
        crawled_at = record.crawled_at or now
        metadata = {
            "crawled_at": record.crawled_at.isoformat() if record.crawled_at else None,
            "source_key": source_key,
        }

        chunks = self.chunker.chunk(record.text)
        rows = [
            (chunk.chunk_index, chunk.content,
             format_vector_literal(self.embedder.generate_embedding(chunk.content)))
            for chunk in chunks
        ]

        try:
            async with self.store.transaction() as tx:
                existing = await tx.find_document(record.url)
                if existing:
                    document_id = existing["id"]
                    added_at = existing["added_at"]
                    await tx.update_document(document_id, record.title, record.text, metadata, now)
                    await tx.delete_chunks(document_id)
                else:
                    document_id = str(uuid.uuid4())
                    added_at = now
                    await tx.insert_document(document_id, record.url, record.title,
                                             record.text, metadata, now)

                if host.value:
                    await tx.upsert_host(host.value, crawled_at)

                if not rows:
                    logger.warning(f"No chunks produced for document {document_id}")
                await tx.insert_chunks(document_id, rows, now)
        except StorageError as e:
            logger.error(f"Failed to index {record.url}: {e}")
            record_indexing_metrics("failed", 0, time.time() - start_time)
            raise

        record_indexing_metrics("indexed", len(rows), time.time() - start_time)
        logger.info(
            f"Indexed document {document_id} ({len(rows)} chunks, "
            f"originally added at {added_at.isoformat()})"
        )
        return IngestResult(
            document_id=document_id,
            chunk_count=len(rows),
            added_at=added_at,
            created=existing is None,
        )
