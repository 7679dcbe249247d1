"""Shared fixtures: in-memory doubles for the PostgreSQL store and Redis."""

import asyncio
import copy
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from config.settings import IndexingConfig, RedisConfig, SearchConfig
from indexer.embeddings import HashEmbedder
from indexer.hybrid_search import HybridSearchEngine
from pipelines.chunker import DocumentChunker
from pipelines.indexer import DocumentPipeline
from services.shared.errors import StorageError
from services.shared.models import HostInfo


class FakeTransaction:
    def __init__(self, store: "InMemoryStore"):
        self.store = store

    def _maybe_fail(self, operation: str) -> None:
        if self.store.fail_on == operation:
            raise StorageError(f"{operation} failed")

    async def find_document(self, url: str) -> Optional[Dict[str, Any]]:
        self._maybe_fail("find_document")
        doc = self.store.documents.get(url)
        if doc is None:
            return None
        return {"id": doc["id"], "added_at": doc["added_at"]}

    async def insert_document(self, document_id, url, title, content, metadata, now) -> None:
        self._maybe_fail("insert_document")
        self.store.documents[url] = {
            "id": document_id,
            "url": url,
            "title": title,
            "content": content,
            "metadata": metadata,
            "added_at": now,
            "last_processed_at": now,
        }

    async def update_document(self, document_id, title, content, metadata, now) -> None:
        self._maybe_fail("update_document")
        for doc in self.store.documents.values():
            if doc["id"] == document_id:
                doc.update(title=title, content=content, metadata=metadata, last_processed_at=now)

    async def delete_chunks(self, document_id) -> None:
        self._maybe_fail("delete_chunks")
        self.store.chunks.pop(document_id, None)

    async def upsert_host(self, hostname, crawled_at) -> None:
        self._maybe_fail("upsert_host")
        current = self.store.hosts.get(hostname)
        self.store.hosts[hostname] = crawled_at if current is None else max(current, crawled_at)

    async def insert_chunks(self, document_id, chunks, now) -> None:
        self._maybe_fail("insert_chunks")
        self.store.chunks.setdefault(document_id, []).extend(chunks)


class FakeReadSession:
    def __init__(self, store: "InMemoryStore"):
        self.store = store

    async def hybrid_search(self, query, vector_literal, text_weight, vector_weight, limit):
        self.store.calls.append(("hybrid_search", query, limit))
        if self.store.fail_on == "hybrid_search":
            raise StorageError("hybrid_search failed")
        return [dict(row) for row in self.store.hybrid_rows[:limit]]

    async def vector_search(self, vector_literal, limit):
        self.store.calls.append(("vector_search", limit))
        if self.store.fail_on == "vector_search":
            raise StorageError("vector_search failed")
        return [dict(row) for row in self.store.vector_rows[:limit]]


class InMemoryStore:
    """Store double with all-or-nothing transactions and canned search rows."""

    def __init__(self):
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.chunks: Dict[str, List[tuple]] = {}
        self.hosts: Dict[str, Any] = {}
        self.hybrid_rows: List[Dict[str, Any]] = []
        self.vector_rows: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []
        self.fail_on: Optional[str] = None
        # Seconds each transaction holds before running its operations.
        self.transaction_delay = 0.0
        self.transactions_started = 0

    @asynccontextmanager
    async def transaction(self):
        snapshot = copy.deepcopy((self.documents, self.chunks, self.hosts))
        self.transactions_started += 1
        try:
            await asyncio.sleep(self.transaction_delay)
            yield FakeTransaction(self)
        except BaseException:
            self.documents, self.chunks, self.hosts = snapshot
            raise

    @asynccontextmanager
    async def read_session(self):
        yield FakeReadSession(self)

    async def list_hosts(self) -> List[HostInfo]:
        if self.fail_on == "list_hosts":
            raise StorageError("list_hosts failed")
        return [HostInfo(hostname=h, last_crawled_at=t) for h, t in sorted(self.hosts.items())]


class FakePipeline:
    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.commands.clear()

    def delete(self, *keys):
        self.commands.append(("delete", keys, {}))
        return self

    def hset(self, key, mapping=None):
        self.commands.append(("hset", (key,), {"mapping": mapping}))
        return self

    async def execute(self):
        self.redis._check()
        results = []
        for name, args, kwargs in self.commands:
            results.append(await getattr(self.redis, name)(*args, **kwargs))
        return results


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the queues and the cache."""

    def __init__(self):
        self.strings: Dict[str, str] = {}
        self.sets: Dict[str, set] = {}
        self.lists: Dict[str, List[str]] = {}
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.broken = False

    def _check(self):
        if self.broken:
            raise RedisConnectionError("connection refused")

    async def sadd(self, key, *members):
        self._check()
        members_set = self.sets.setdefault(key, set())
        added = 0
        for member in members:
            if member not in members_set:
                members_set.add(member)
                added += 1
        return added

    async def spop(self, key):
        self._check()
        members = self.sets.get(key)
        if not members:
            return None
        return members.pop().encode("utf-8")

    async def set(self, key, value):
        self._check()
        self.strings[key] = value
        return True

    async def get(self, key):
        self._check()
        value = self.strings.get(key)
        return value.encode("utf-8") if value is not None else None

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            for space in (self.strings, self.sets, self.lists, self.hashes):
                if space.pop(key, None) is not None:
                    removed += 1
        return removed

    async def rpush(self, key, *values):
        self._check()
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    async def blpop(self, keys, timeout=0):
        deadline = None if not timeout else asyncio.get_running_loop().time() + timeout
        while True:
            self._check()
            for key in keys:
                if self.lists.get(key):
                    return key.encode("utf-8"), self.lists[key].pop(0).encode("utf-8")
            if deadline is not None and asyncio.get_running_loop().time() >= deadline:
                return None
            await asyncio.sleep(0.005)

    async def hgetall(self, key):
        self._check()
        return {k.encode("utf-8"): v.encode("utf-8") for k, v in self.hashes.get(key, {}).items()}

    async def hset(self, key, mapping=None):
        self._check()
        self.hashes.setdefault(key, {}).update(mapping or {})
        return len(mapping or {})

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def aclose(self):
        pass


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_config():
    return RedisConfig(seed_poll_interval=0.01)


@pytest.fixture
def search_config():
    return SearchConfig(text_weight=0.6, vector_weight=0.4, result_limit=10)


@pytest.fixture
def embedder():
    return HashEmbedder(IndexingConfig().embedding_dimensions)


@pytest.fixture
def pipeline(store, embedder):
    return DocumentPipeline(store, DocumentChunker(chunk_size=4, chunk_overlap=1), embedder)


@pytest.fixture
def engine(store, embedder, search_config):
    return HybridSearchEngine(store, embedder, search_config)
