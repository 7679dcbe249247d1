import json

import pytest

from pipelines.article_queue import ArticleQueue
from pipelines.crawler import FetchResult, SeedCrawler, extract_article
from pipelines.fetch_cache import ConditionalFetchCache
from pipelines.seeds import SeedQueueManager
from services.shared.models import ResponseHints


class FakeFetcher:
    def __init__(self, *results):
        self.results = list(results)
        self.requests = []

    async def fetch(self, url, headers=None):
        self.requests.append((url, dict(headers or {})))
        return self.results.pop(0)


@pytest.fixture
def cache(fake_redis, redis_config):
    return ConditionalFetchCache(fake_redis, redis_config)


def make_crawler(fake_redis, redis_config, cache, fetcher):
    return SeedCrawler(
        SeedQueueManager(fake_redis, redis_config),
        cache,
        fetcher,
        ArticleQueue(fake_redis, redis_config),
    )


@pytest.mark.asyncio
async def test_crawl_publishes_article_and_records_hints(fake_redis, redis_config, cache):
    fetcher = FakeFetcher(FetchResult(
        url="https://example.com/a", status_code=200, title="A page",
        text="hello world", etag='"v1"',
    ))
    crawler = make_crawler(fake_redis, redis_config, cache, fetcher)

    key = await crawler.crawl_one("https://example.com/a")

    assert fetcher.requests == [("https://example.com/a", {})]
    assert fake_redis.lists["crawler:queue"] == [key]
    payload = json.loads(fake_redis.strings[key])
    assert payload["url"] == "https://example.com/a"
    assert payload["title"] == "A page"
    assert payload["crawledAt"]
    assert (await cache.lookup("https://example.com/a")).etag == '"v1"'


@pytest.mark.asyncio
async def test_recrawl_sends_conditional_headers_and_skips_304(fake_redis, redis_config, cache):
    await cache.record("https://example.com/a", ResponseHints(etag='"v1"'))
    fetcher = FakeFetcher(FetchResult(url="https://example.com/a", status_code=304, not_modified=True))
    crawler = make_crawler(fake_redis, redis_config, cache, fetcher)

    assert await crawler.crawl_one("https://example.com/a") is None
    assert fetcher.requests[0][1] == {"If-None-Match": '"v1"'}
    assert fake_redis.lists == {}


@pytest.mark.asyncio
async def test_failed_fetch_leaves_cache_alone(fake_redis, redis_config, cache):
    await cache.record("https://example.com/a", ResponseHints(etag='"v1"'))
    fetcher = FakeFetcher(FetchResult(url="https://example.com/a", status_code=500, error="HTTP 500"))
    crawler = make_crawler(fake_redis, redis_config, cache, fetcher)

    assert await crawler.crawl_one("https://example.com/a") is None
    assert (await cache.lookup("https://example.com/a")).etag == '"v1"'


@pytest.mark.asyncio
async def test_response_without_hints_invalidates_cache(fake_redis, redis_config, cache):
    await cache.record("https://example.com/a", ResponseHints(etag='"v1"'))
    fetcher = FakeFetcher(FetchResult(url="https://example.com/a", status_code=200, text="fresh body"))
    crawler = make_crawler(fake_redis, redis_config, cache, fetcher)

    assert await crawler.crawl_one("https://example.com/a") is not None
    assert await cache.lookup("https://example.com/a") is None


@pytest.mark.asyncio
async def test_blank_page_is_not_published(fake_redis, redis_config, cache):
    fetcher = FakeFetcher(FetchResult(url="https://example.com/a", status_code=200, text="  ", etag='"v1"'))
    crawler = make_crawler(fake_redis, redis_config, cache, fetcher)

    assert await crawler.crawl_one("https://example.com/a") is None
    assert fake_redis.lists == {}


def test_extract_article():
    html = """
    <html><head><title> Guide </title><style>body {}</style></head>
    <body><script>var x = 1;</script><h1>Intro</h1><p>First   paragraph.</p></body></html>
    """
    title, text = extract_article(html, "https://example.com")
    assert title == "Guide"
    assert text == "Intro First paragraph."


def test_extract_article_without_title():
    title, text = extract_article("<p>just text</p>", "https://example.com/x")
    assert title == "https://example.com/x"
    assert text == "just text"


def test_fetch_result_ok():
    assert FetchResult(url="u", status_code=200).ok
    assert not FetchResult(url="u", status_code=404, error="HTTP 404").ok
    assert FetchResult(url="u", status_code=200, etag="x").hints() == ResponseHints(etag="x")


def test_extract_article_drops_navigation_and_footer():
    html = ("<body><nav>Home About Pricing Login</nav>"
            "<article><p>The actual article body.</p></article>"
            "<footer>Copyright 2024 Cookie settings</footer></body>")
    title, text = extract_article(html, "https://example.com/post")
    assert text == "The actual article body."
    assert title == "https://example.com/post"


def test_extract_article_keeps_long_main_content():
    paragraphs = "".join(
        f"<p>Paragraph {i} explains how hybrid retrieval fuses lexical rank with vector similarity "
        f"so that relevant pages surface even without exact keyword matches.</p>"
        for i in range(6)
    )
    html = (
        "<html><head><title>Hybrid retrieval</title></head><body>"
        "<header><a href='/'>Home</a> <a href='/pricing'>Pricing</a></header>"
        "<nav><ul><li>Docs</li><li>Blog</li><li>Login</li></ul></nav>"
        f"<main><article><h1>Hybrid retrieval</h1>{paragraphs}</article></main>"
        "<footer>Copyright 2024 Example Inc. Cookie settings</footer>"
        "</body></html>"
    )
    title, text = extract_article(html, "https://example.com/hybrid")
    assert title == "Hybrid retrieval"
    assert "Paragraph 0 explains how hybrid retrieval" in text
    assert "Paragraph 5 explains" in text
    assert "Cookie settings" not in text
    assert "Login" not in text
