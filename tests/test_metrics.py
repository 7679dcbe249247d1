from observability.prometheus_metrics import (
    PrometheusMiddleware,
    crawlsearch_registry,
    get_metrics_payload,
    record_cache_event,
    record_indexing_metrics,
    record_search_metrics,
    record_seed_metrics,
)


def sample(name, **labels):
    return crawlsearch_registry.get_sample_value(name, labels) or 0.0


def test_search_metrics_count_fallbacks():
    before_ok = sample("crawlsearch_search_requests_total", status="ok")
    before_fallback = sample("crawlsearch_search_vector_fallbacks_total")

    record_search_metrics("ok", 3, 0.01, used_fallback=True)
    record_search_metrics("ok", 5, 0.01)

    assert sample("crawlsearch_search_requests_total", status="ok") == before_ok + 2
    assert sample("crawlsearch_search_vector_fallbacks_total") == before_fallback + 1


def test_indexing_and_seed_metrics():
    before_failed = sample("crawlsearch_indexing_documents_total", status="failed")
    before_dup = sample("crawlsearch_seeds_enqueued_total", result="duplicate")
    before_added = sample("crawlsearch_seeds_enqueued_total", result="added")

    record_indexing_metrics("failed", 0, 0.2)
    record_seed_metrics(added=2, duplicates=1)
    record_cache_event("hit")

    assert sample("crawlsearch_indexing_documents_total", status="failed") == before_failed + 1
    assert sample("crawlsearch_seeds_enqueued_total", result="added") == before_added + 2
    assert sample("crawlsearch_seeds_enqueued_total", result="duplicate") == before_dup + 1
    assert sample("crawlsearch_fetch_cache_events_total", event="hit") >= 1


def test_metrics_payload():
    body, content_type = get_metrics_payload()
    assert b"crawlsearch_search_requests_total" in body
    assert content_type.startswith("text/plain")


def test_endpoint_normalization():
    middleware = PrometheusMiddleware(app=None)
    assert middleware._normalize_endpoint("/hosts/42") == "/hosts/{id}"
    assert middleware._normalize_endpoint(
        "/documents/2f1c3a9e-8d7b-4c6a-9e5f-0a1b2c3d4e5f") == "/documents/{uuid}"
