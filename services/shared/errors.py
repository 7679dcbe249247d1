"""Error taxonomy for the ingestion and retrieval core.

``InvalidInput`` errors are rejected immediately and never retried.
``StorageError`` wraps store and queue failures and is surfaced to callers.
Partial degradation is not an exception; see ``services.shared.results``.
"""


class CrawlSearchError(Exception):
    """Base class for all crawlsearch errors."""


class InvalidInput(CrawlSearchError):
    """Input was rejected before touching the store."""


class InvalidURL(InvalidInput):
    """URL could not be parsed as an absolute http(s) URL."""

    def __init__(self, url: str, reason: str = "not an absolute http(s) URL"):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid URL {url!r}: {reason}")


class EmptyQuery(InvalidInput):
    """Search query was empty after trimming."""

    def __init__(self):
        super().__init__("Query must not be empty")


class EmptyContent(InvalidInput):
    """Article text was empty after trimming."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Document {url} has no text content")


class ParseError(InvalidInput):
    """Queued article payload could not be decoded."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Failed to parse payload for {source}: {reason}")


class StorageError(CrawlSearchError):
    """Transaction, connection or queue failure."""


class ServiceShuttingDown(CrawlSearchError):
    """Raised for calls that arrive after shutdown has begun."""
