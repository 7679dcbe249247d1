"""Prometheus metrics for crawlsearch."""

import logging
import re
import time

from fastapi import FastAPI, Request
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.core import CollectorRegistry

logger = logging.getLogger(__name__)

# Custom registry so tests and multiple apps never collide with the default one
crawlsearch_registry = CollectorRegistry()

# Request metrics
request_count = Counter(
    'crawlsearch_http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=crawlsearch_registry
)

request_duration = Histogram(
    'crawlsearch_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=crawlsearch_registry
)

# Search metrics
search_requests = Counter(
    'crawlsearch_search_requests_total',
    'Total number of search requests',
    ['status'],
    registry=crawlsearch_registry
)

search_duration = Histogram(
    'crawlsearch_search_duration_seconds',
    'Search request duration in seconds',
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=crawlsearch_registry
)

search_results_count = Histogram(
    'crawlsearch_search_results_count',
    'Number of search results returned',
    buckets=[0, 1, 5, 10, 25, 50, 100],
    registry=crawlsearch_registry
)

search_fallbacks = Counter(
    'crawlsearch_search_vector_fallbacks_total',
    'Searches that needed the vector-only fallback query',
    registry=crawlsearch_registry
)

# Indexing metrics
indexing_documents = Counter(
    'crawlsearch_indexing_documents_total',
    'Total number of documents processed by the indexer',
    ['status'],
    registry=crawlsearch_registry
)

indexing_duration = Histogram(
    'crawlsearch_indexing_duration_seconds',
    'Document indexing duration in seconds',
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0],
    registry=crawlsearch_registry
)

indexing_chunks = Histogram(
    'crawlsearch_indexing_chunks_count',
    'Number of chunks created per document',
    buckets=[0, 1, 5, 10, 25, 50, 100, 250],
    registry=crawlsearch_registry
)

worker_failures = Counter(
    'crawlsearch_worker_failures_total',
    'Queue items the ingestion worker could not process',
    ['reason'],
    registry=crawlsearch_registry
)

# Crawl bookkeeping
seeds_enqueued = Counter(
    'crawlsearch_seeds_enqueued_total',
    'Seed submissions by result',
    ['result'],
    registry=crawlsearch_registry
)

fetch_cache_events = Counter(
    'crawlsearch_fetch_cache_events_total',
    'Conditional-fetch cache operations',
    ['event'],
    registry=crawlsearch_registry
)


class PrometheusMiddleware:
    """Middleware to collect Prometheus metrics for HTTP requests."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        method = request.method
        endpoint = self._normalize_endpoint(request.url.path)
        start_time = time.time()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            request_count.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
            request_duration.labels(method=method, endpoint=endpoint).observe(time.time() - start_time)

    def _normalize_endpoint(self, path: str) -> str:
        """Normalize endpoint path to reduce cardinality."""
        path = re.sub(r'/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', '/{uuid}', path)
        return re.sub(r'/\d+', '/{id}', path)


def setup_prometheus_metrics(app: FastAPI) -> None:
    """Add request metrics middleware to a FastAPI app."""
    app.add_middleware(PrometheusMiddleware)
    logger.info("Prometheus metrics configured")


def get_metrics_payload() -> tuple:
    """Exposition body and content type for a /metrics endpoint."""
    return generate_latest(crawlsearch_registry), CONTENT_TYPE_LATEST


def record_search_metrics(status: str, result_count: int, duration: float,
                          used_fallback: bool = False) -> None:
    """Record search-related metrics."""
    search_requests.labels(status=status).inc()
    search_duration.observe(duration)
    if status == "ok":
        search_results_count.observe(result_count)
    if used_fallback:
        search_fallbacks.inc()


def record_indexing_metrics(status: str, chunk_count: int, duration: float) -> None:
    """Record indexing-related metrics."""
    indexing_documents.labels(status=status).inc()
    if status == "indexed":
        indexing_duration.observe(duration)
        indexing_chunks.observe(chunk_count)


def record_worker_failure(reason: str) -> None:
    worker_failures.labels(reason=reason).inc()


def record_seed_metrics(added: int, duplicates: int) -> None:
    if added:
        seeds_enqueued.labels(result="added").inc(added)
    if duplicates:
        seeds_enqueued.labels(result="duplicate").inc(duplicates)


def record_cache_event(event: str) -> None:
    fetch_cache_events.labels(event=event).inc()
