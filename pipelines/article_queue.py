"""Queue of extracted articles between the crawler and the indexer.

The payload is stored under its own key; only the key travels through the
Redis list. Consumers delete the payload after a successful ingest.
"""

import logging
import re
import uuid
from typing import Optional
from urllib.parse import urlsplit

from redis.exceptions import RedisError

from config.settings import RedisConfig
from services.shared.errors import StorageError
from services.shared.models import ArticleRecord

logger = logging.getLogger(__name__)


def sanitize_segment(segment: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", segment.lower()).strip("-")


def _decode(value) -> Optional[str]:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class ArticleQueue:
    def __init__(self, redis_client, config: RedisConfig):
        self.redis = redis_client
        self.config = config

    def build_key(self, url: str) -> str:
        """Readable, unique payload key such as ``crawler:doc:example-com-docs-intro-1a2b3c4d``."""
        try:
            parts = urlsplit(url)
            host_segment = sanitize_segment(parts.hostname or "") or "site"
            path_segment = sanitize_segment(parts.path) or "page"
        except ValueError:
            host_segment, path_segment = "site", "page"
        return f"{self.config.document_prefix}:{host_segment}-{path_segment}-{uuid.uuid4().hex[:8]}"

    async def publish(self, record: ArticleRecord) -> str:
        key = self.build_key(record.url)
        try:
            await self.redis.set(key, record.to_payload())
            await self.redis.rpush(self.config.article_queue_key, key)
        except RedisError as e:
            raise StorageError(f"Failed to publish article {record.url}: {e}") from e
        logger.info(f"Stored parsed content under key {key}")
        return key

    async def next_key(self, timeout: float = 0) -> Optional[str]:
        """Pop the next key, waiting up to ``timeout`` seconds (0 blocks forever).

        Returns ``None`` when the timeout expires with the queue still empty.
        """
        try:
            result = await self.redis.blpop([self.config.article_queue_key], timeout=timeout)
        except RedisError as e:
            raise StorageError(f"Failed to pop article queue: {e}") from e
        if result is None:
            return None
        _, key = result
        return _decode(key)

    async def load(self, key: str) -> Optional[str]:
        try:
            return _decode(await self.redis.get(key))
        except RedisError as e:
            raise StorageError(f"Failed to load payload {key}: {e}") from e

    async def discard(self, key: str) -> None:
        try:
            await self.redis.delete(key)
        except RedisError as e:
            raise StorageError(f"Failed to delete payload {key}: {e}") from e
