"""Seed queue for crawlsearch.

Pending seeds live in a Redis set, so resubmitting a URL that is already
waiting is a no-op.
"""

import asyncio
import logging
from typing import Iterable, List, Optional

from redis.exceptions import RedisError

from config.settings import RedisConfig
from observability.prometheus_metrics import record_seed_metrics
from pipelines.urls import normalize_url, root_url_for_host
from services.shared.errors import InvalidURL, StorageError
from services.shared.models import BulkEnqueueResult, EnqueueResult

logger = logging.getLogger(__name__)


def _decode(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class SeedQueueManager:
    """Deduplicated set of URLs awaiting crawl."""

    def __init__(self, redis_client, config: RedisConfig):
        self.redis = redis_client
        self.config = config

    @property
    def queue_key(self) -> str:
        return self.config.seed_queue_key

    async def enqueue(self, url: str) -> EnqueueResult:
        """Add one seed. ``added`` is False when it was already pending."""
        normalized = normalize_url(url)
        try:
            added = await self.redis.sadd(self.queue_key, normalized)
        except RedisError as e:
            raise StorageError(f"Failed to enqueue URL: {e}") from e

        result = EnqueueResult(url=normalized, added=bool(added))
        record_seed_metrics(added=int(result.added), duplicates=int(not result.added))
        logger.info(f"Enqueued crawl request {normalized} (already_queued={not result.added})")
        return result

    async def enqueue_many(self, urls: Iterable[str]) -> BulkEnqueueResult:
        """Add several seeds at once; invalid URLs are skipped."""
        seeds: List[str] = []
        for url in urls:
            try:
                normalized = normalize_url(url)
            except InvalidURL as e:
                logger.warning(f"Skipping seed: {e}")
                continue
            if normalized not in seeds:
                seeds.append(normalized)
        return await self._add_all(seeds)

    async def enqueue_for_hosts(self, hosts: Iterable[str]) -> BulkEnqueueResult:
        """Schedule a re-crawl of every host from its root URL."""
        hostnames: List[str] = []
        for host in hosts:
            if not isinstance(host, str):
                continue
            hostname = host.strip().lower()
            if hostname and hostname not in hostnames:
                hostnames.append(hostname)

        seeds: List[str] = []
        for hostname in hostnames:
            try:
                seed = root_url_for_host(hostname)
            except InvalidURL as e:
                logger.warning(f"Cannot derive a seed for host {hostname!r}: {e}")
                continue
            if seed not in seeds:
                seeds.append(seed)

        if not seeds:
            return BulkEnqueueResult(attempted=len(hostnames), added=0)

        result = await self._add_all(seeds)
        logger.info(f"Scheduled recrawl for crawled sites (attempted={result.attempted}, enqueued={result.added})")
        return result

    async def _add_all(self, seeds: List[str]) -> BulkEnqueueResult:
        if not seeds:
            return BulkEnqueueResult(attempted=0, added=0)
        try:
            added = await self.redis.sadd(self.queue_key, *seeds)
        except RedisError as e:
            raise StorageError(f"Failed to enqueue seeds: {e}") from e
        record_seed_metrics(added=int(added), duplicates=len(seeds) - int(added))
        return BulkEnqueueResult(attempted=len(seeds), added=int(added))

    async def dequeue_next(self) -> Optional[str]:
        """Remove and return one pending seed, or None when the set is empty."""
        try:
            value = await self.redis.spop(self.queue_key)
        except RedisError as e:
            raise StorageError(f"Failed to pop seed: {e}") from e
        return _decode(value)

    async def wait_for_seed(self, stop_event: Optional[asyncio.Event] = None) -> Optional[str]:
        """Poll until a seed is available, sleeping between empty polls.

        Returns None only when ``stop_event`` is set.
        """
        while stop_event is None or not stop_event.is_set():
            seed = await self.dequeue_next()
            if seed:
                return seed
            if stop_event is None:
                await asyncio.sleep(self.config.seed_poll_interval)
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.config.seed_poll_interval)
            except asyncio.TimeoutError:
                pass
        return None
