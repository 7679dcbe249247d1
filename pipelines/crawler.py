"""Seed crawler for crawlsearch.

Consumes the seed queue, fetches each page through a ``PageFetcher`` using the
conditional-fetch cache, and publishes extracted articles for the indexer.
The fetcher is injected; ``AiohttpPageFetcher`` is the bundled implementation.
"""

import argparse
import asyncio
import logging
import random
import signal
import time
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

import aiohttp
import redis.asyncio as aioredis
from bs4 import BeautifulSoup
from trafilatura import extract

from config.settings import FetchConfig, Settings
from observability.logging import bind_logger, setup_logging
from pipelines.article_queue import ArticleQueue
from pipelines.fetch_cache import ConditionalFetchCache, conditional_headers
from pipelines.seeds import SeedQueueManager
from services.shared.errors import CrawlSearchError, InvalidURL
from services.shared.models import ArticleRecord, ResponseHints, utcnow

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

# Below this many characters the main-content extractor is not trusted.
MIN_EXTRACTED_CHARS = 40
BOILERPLATE_TAGS = ["script", "style", "noscript", "template", "nav", "header", "footer", "aside", "form"]


@dataclass
class FetchResult:
    """Result of fetching a single URL."""
    url: str
    status_code: int
    not_modified: bool = False
    title: str = ""
    text: str = ""
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    cache_control: Optional[str] = None
    final_url: Optional[str] = None
    error: Optional[str] = None
    response_time: Optional[float] = None
    retry_count: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status_code < 300

    def hints(self) -> ResponseHints:
        return ResponseHints(
            etag=self.etag,
            last_modified=self.last_modified,
            cache_control=self.cache_control,
        )


class PageFetcher(Protocol):
    async def fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> FetchResult:
        ...


def extract_article(html: str, fallback_title: str) -> tuple:
    """Return ``(title, text)`` from an HTML document.

    The main content comes from trafilatura. When it finds too little, the
    text of ``<main>``, ``<article>`` or ``<body>`` is used with navigation,
    header, footer and sidebar elements removed.
    """
    soup = BeautifulSoup(html, "html.parser")
    title = ""
    if soup.title and soup.title.string:
        title = soup.title.string.strip()

    text = " ".join((extract(html, include_comments=False, include_tables=True) or "").split())
    if len(text) < MIN_EXTRACTED_CHARS:
        for tag in soup(BOILERPLATE_TAGS):
            tag.decompose()
        root = soup.find("main") or soup.find("article") or soup.body or soup
        fallback = " ".join(root.get_text(separator=" ").split())
        if len(fallback) > len(text):
            text = fallback

    return title or fallback_title, text


class AiohttpPageFetcher:
    """Asynchronous page fetcher with conditional requests and retries."""

    def __init__(self, config: FetchConfig):
        self.config = config
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
        self.session = aiohttp.ClientSession(
            timeout=timeout,
            headers={'User-Agent': self.config.user_agent}
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay with jitter."""
        base_delay = self.config.retry_delay * (2 ** attempt)
        jitter = random.uniform(0.1, 0.3) * base_delay
        return min(base_delay + jitter, self.config.max_retry_delay)

    async def fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> FetchResult:
        if self.session is None:
            await self.__aenter__()

        start_time = time.time()
        last_error = None
        for attempt in range(self.config.max_retries + 1):
            try:
                async with self.session.get(url, headers=headers or {}, allow_redirects=True) as response:
                    if response.status in RETRYABLE_STATUS_CODES and attempt < self.config.max_retries:
                        delay = self._calculate_retry_delay(attempt)
                        logger.warning(f"Retryable status {response.status} for {url}, retrying in {delay:.2f}s")
                        await asyncio.sleep(delay)
                        continue

                    result = FetchResult(
                        url=url,
                        status_code=response.status,
                        not_modified=response.status == 304,
                        etag=response.headers.get('ETag'),
                        last_modified=response.headers.get('Last-Modified'),
                        cache_control=response.headers.get('Cache-Control'),
                        final_url=str(response.url),
                        retry_count=attempt,
                    )
                    if result.not_modified or response.status >= 400:
                        if response.status >= 400:
                            result.error = f"HTTP {response.status}"
                        result.response_time = time.time() - start_time
                        return result

                    content_type = response.headers.get('Content-Type', '')
                    if not content_type.startswith('text/'):
                        result.error = f"Non-text content type: {content_type}"
                        result.response_time = time.time() - start_time
                        return result

                    html = await response.text()
                    result.title, result.text = extract_article(html, url)
                    result.response_time = time.time() - start_time
                    return result

            except (asyncio.TimeoutError, aiohttp.ClientConnectionError) as e:
                last_error = e
                if attempt < self.config.max_retries:
                    delay = self._calculate_retry_delay(attempt)
                    logger.warning(f"Error fetching {url}: {e!r}, retrying in {delay:.2f}s")
                    await asyncio.sleep(delay)
                    continue
            except aiohttp.ClientError as e:
                last_error = e
                break

        return FetchResult(
            url=url,
            status_code=0,
            error=str(last_error) if last_error else "Unknown error",
            response_time=time.time() - start_time,
            retry_count=self.config.max_retries,
        )


class SeedCrawler:
    """Turns seeds into queued articles, one page per seed."""

    def __init__(self, seeds: SeedQueueManager, cache: ConditionalFetchCache,
                 fetcher: PageFetcher, articles: ArticleQueue):
        self.seeds = seeds
        self.cache = cache
        self.fetcher = fetcher
        self.articles = articles
        self._stop = asyncio.Event()

    def request_shutdown(self) -> None:
        self._stop.set()

    async def crawl_one(self, url: str) -> Optional[str]:
        """Fetch ``url`` and publish its article. Returns the payload key, if any."""
        log = bind_logger(logger, url=url)
        hints = await self.cache.lookup(url)
        result = await self.fetcher.fetch(url, conditional_headers(hints))

        if result.not_modified:
            log.info("Not modified since last crawl, skipping")
            return None
        if not result.ok:
            log.warning(f"Fetch failed: {result.error}")
            return None

        await self.cache.record(url, result.hints())

        if not result.text.strip():
            log.warning("Could not extract content")
            return None

        record = ArticleRecord(
            url=result.final_url or url,
            title=result.title or url,
            text=result.text,
            crawled_at=utcnow(),
        )
        return await self.articles.publish(record)

    async def run(self) -> None:
        logger.info(f"Crawler idle: awaiting URLs on seed queue {self.seeds.queue_key}")
        while not self._stop.is_set():
            try:
                seed = await self.seeds.wait_for_seed(self._stop)
            except CrawlSearchError as e:
                logger.error(f"Seed queue unavailable: {e}")
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.seeds.config.seed_poll_interval)
                except asyncio.TimeoutError:
                    pass
                continue
            if seed is None:
                break

            try:
                logger.info(f"Starting crawl for {seed}")
                await self.crawl_one(seed)
            except InvalidURL as e:
                logger.error(f"Invalid seed URL {seed!r}: {e}")
            except Exception:
                logger.exception(f"Crawler error for {seed}")
        logger.info("Crawler stopped")


async def main_async(settings: Settings, start_url: Optional[str] = None) -> None:
    redis_client = aioredis.from_url(settings.redis.url)
    seeds = SeedQueueManager(redis_client, settings.redis)
    if start_url:
        await seeds.enqueue(start_url)

    async with AiohttpPageFetcher(settings.fetch) as fetcher:
        crawler = SeedCrawler(
            seeds,
            ConditionalFetchCache(redis_client, settings.redis),
            fetcher,
            ArticleQueue(redis_client, settings.redis),
        )
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, crawler.request_shutdown)
        try:
            await crawler.run()
        finally:
            await redis_client.aclose()


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Run the crawlsearch seed crawler")
    parser.add_argument("start_url", nargs="?", default=None, help="Optional URL to enqueue first")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    setup_logging(
        level=settings.logging.level,
        service_name="crawlsearch-crawler",
        log_file=settings.logging.log_file,
        use_json=settings.logging.use_json,
    )
    asyncio.run(main_async(settings, args.start_url))


if __name__ == "__main__":
    main()
