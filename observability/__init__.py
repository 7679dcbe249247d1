"""Observability package for crawlsearch."""

from .logging import setup_logging, bind_logger, ContextLogger, JSONFormatter, ConsoleFormatter
from .prometheus_metrics import (
    setup_prometheus_metrics,
    get_metrics_payload,
    record_search_metrics,
    record_indexing_metrics,
    record_worker_failure,
    record_seed_metrics,
    record_cache_event,
    PrometheusMiddleware,
    crawlsearch_registry
)

__all__ = [
    'setup_logging',
    'bind_logger',
    'ContextLogger',
    'JSONFormatter',
    'ConsoleFormatter',
    'setup_prometheus_metrics',
    'get_metrics_payload',
    'record_search_metrics',
    'record_indexing_metrics',
    'record_worker_failure',
    'record_seed_metrics',
    'record_cache_event',
    'PrometheusMiddleware',
    'crawlsearch_registry'
]
