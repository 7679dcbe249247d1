"""Conditional-fetch cache for crawlsearch.

Stores the caching headers of the last successful fetch of each URL so that
re-crawls can send ``If-None-Match`` / ``If-Modified-Since``.
"""

import logging
from typing import Dict, Optional

from redis.exceptions import RedisError

from config.settings import RedisConfig
from observability.prometheus_metrics import record_cache_event
from pipelines.urls import normalize_url
from services.shared.errors import StorageError
from services.shared.models import CacheHints, ResponseHints, utcnow

logger = logging.getLogger(__name__)


def _text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    return value or None


def conditional_headers(hints: Optional[CacheHints]) -> Dict[str, str]:
    """Request headers that let the server answer 304 Not Modified."""
    headers = {}
    if hints is None:
        return headers
    if hints.etag:
        headers["If-None-Match"] = hints.etag
    if hints.last_modified:
        headers["If-Modified-Since"] = hints.last_modified
    return headers


class ConditionalFetchCache:
    """Per-URL Redis hash of caching hints; URLs never coordinate with each other."""

    def __init__(self, redis_client, config: RedisConfig):
        self.redis = redis_client
        self.config = config

    def key_for(self, url: str) -> str:
        return f"{self.config.cache_prefix}:{normalize_url(url)}"

    async def lookup(self, url: str) -> Optional[CacheHints]:
        key = self.key_for(url)
        try:
            entry = await self.redis.hgetall(key)
        except RedisError as e:
            raise StorageError(f"Failed to read cache entry for {url}: {e}") from e

        if not entry:
            record_cache_event("miss")
            return None

        fields = {_text(k): _text(v) for k, v in entry.items()}
        hints = CacheHints(etag=fields.get("etag"), last_modified=fields.get("last_modified"))
        if not (hints.etag or hints.last_modified):
            record_cache_event("miss")
            return None
        record_cache_event("hit")
        return hints

    async def record(self, url: str, hints: ResponseHints) -> None:
        """Replace the entry with ``hints``; a response without hints invalidates it."""
        if hints.is_empty():
            await self.invalidate(url)
            return

        key = self.key_for(url)
        mapping = {"last_fetched": utcnow().isoformat()}
        if hints.etag:
            mapping["etag"] = hints.etag
        if hints.last_modified:
            mapping["last_modified"] = hints.last_modified
        if hints.cache_control:
            mapping["cache_control"] = hints.cache_control

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(key, mapping=mapping)
                await pipe.execute()
        except RedisError as e:
            raise StorageError(f"Failed to record cache entry for {url}: {e}") from e
        record_cache_event("record")
        logger.debug(f"Recorded caching hints for {url}")

    async def invalidate(self, url: str) -> None:
        key = self.key_for(url)
        try:
            await self.redis.delete(key)
        except RedisError as e:
            raise StorageError(f"Failed to invalidate cache entry for {url}: {e}") from e
        record_cache_event("invalidate")
        logger.debug(f"Invalidated caching hints for {url}")
