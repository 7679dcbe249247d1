"""Ingestion worker for crawlsearch.

Pops one article key at a time from the queue and ingests it. A failing item
is logged and dropped; the loop only ends on shutdown.
"""

import argparse
import asyncio
import logging
import signal
from typing import Optional

import redis.asyncio as aioredis

from config.settings import Settings
from indexer.embeddings import HashEmbedder
from indexer.postgres_adapter import PostgresAdapter
from observability.logging import bind_logger, setup_logging
from observability.prometheus_metrics import record_worker_failure
from pipelines.article_queue import ArticleQueue
from pipelines.chunker import DocumentChunker
from pipelines.indexer import DocumentPipeline
from services.shared.errors import InvalidInput, StorageError

logger = logging.getLogger(__name__)


class IngestionWorker:
    """Single-document-at-a-time consumer of the article queue."""

    def __init__(self, queue: ArticleQueue, pipeline: DocumentPipeline, pop_timeout: float = 1.0):
        self.queue = queue
        self.pipeline = pipeline
        self.pop_timeout = pop_timeout
        self._stop = asyncio.Event()
        self.processed = 0
        self.failed = 0

    def request_shutdown(self) -> None:
        if not self._stop.is_set():
            logger.info("Shutdown requested; finishing current document")
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def process_key(self, key: str) -> bool:
        """Ingest the payload stored under ``key``. Never raises."""
        log = bind_logger(logger, source_key=key)
        try:
            payload = await self.queue.load(key)
            if payload is None:
                log.warning("Payload missing, skipping")
                return False
            await self.pipeline.ingest_payload(payload, key)
            await self.queue.discard(key)
        except InvalidInput as e:
            log.warning(f"Rejected: {e}")
            record_worker_failure("invalid_input")
        except StorageError as e:
            log.error(f"Storage failure: {e}")
            record_worker_failure("storage")
        except Exception:
            log.exception("Unexpected error processing payload")
            record_worker_failure("unexpected")
        else:
            self.processed += 1
            return True
        self.failed += 1
        return False

    async def _next_key(self) -> Optional[str]:
        """Wait for the next key; ``None`` once shutdown is requested.

        Each pop runs to completion with a short server-side timeout, so a key
        that Redis has already removed from the list is never abandoned.
        """
        while not self._stop.is_set():
            key = await self.queue.next_key(timeout=self.pop_timeout)
            if key is not None:
                return key
        return None

    async def run(self) -> None:
        logger.info("Indexer service started. Waiting for documents...")
        while not self._stop.is_set():
            try:
                key = await self._next_key()
            except StorageError as e:
                logger.error(f"Queue unavailable: {e}")
                record_worker_failure("queue")
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=1.0)
                except asyncio.TimeoutError:
                    pass
                continue
            if key is None:
                break
            # The in-flight document always completes or rolls back before exit.
            await asyncio.shield(self.process_key(key))
        logger.info(f"Indexer stopped (processed={self.processed}, failed={self.failed})")


async def main_async(settings: Settings) -> None:
    redis_client = aioredis.from_url(settings.redis.url)
    store = PostgresAdapter(settings.postgres)
    await store.initialize()

    pipeline = DocumentPipeline(
        store,
        DocumentChunker(settings.indexing.chunk_size, settings.indexing.chunk_overlap),
        HashEmbedder(settings.indexing.embedding_dimensions),
    )
    worker = IngestionWorker(ArticleQueue(redis_client, settings.redis), pipeline)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.request_shutdown)

    try:
        await worker.run()
    finally:
        await redis_client.aclose()
        await store.close()


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Run the crawlsearch ingestion worker")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    setup_logging(
        level=args.log_level or settings.logging.level,
        service_name="crawlsearch-indexer",
        log_file=settings.logging.log_file,
        use_json=settings.logging.use_json,
    )
    asyncio.run(main_async(settings))


if __name__ == "__main__":
    main()
