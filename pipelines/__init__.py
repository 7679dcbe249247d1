"""Pipelines package for crawlsearch.

Provides seed queueing, conditional fetching, chunking, and document ingestion.
"""

from .urls import normalize_url, root_url_for_host
from .seeds import SeedQueueManager
from .fetch_cache import ConditionalFetchCache, conditional_headers
from .chunker import DocumentChunker, DocumentChunk, chunk_text
from .indexer import DocumentPipeline
from .article_queue import ArticleQueue
from .worker import IngestionWorker
from .crawler import AiohttpPageFetcher, FetchResult, PageFetcher, SeedCrawler

__all__ = [
    # Seeds
    'normalize_url',
    'root_url_for_host',
    'SeedQueueManager',

    # Fetching
    'ConditionalFetchCache',
    'conditional_headers',
    'AiohttpPageFetcher',
    'FetchResult',
    'PageFetcher',
    'SeedCrawler',

    # Chunker
    'DocumentChunker',
    'DocumentChunk',
    'chunk_text',

    # Ingestion
    'DocumentPipeline',
    'ArticleQueue',
    'IngestionWorker'
]
