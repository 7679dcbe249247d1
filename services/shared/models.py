"""Shared records passed between the write path and the read path."""
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArticleRecord(BaseModel):
    """One extracted article as produced by the page fetcher."""
    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(min_length=1)
    title: str = ""
    text: str = ""
    crawled_at: Optional[datetime] = Field(default=None, alias="crawledAt")

    @field_validator("title", "text", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("crawled_at", mode="before")
    @classmethod
    def _lenient_timestamp(cls, value: Any) -> Any:
        # Unparseable crawl times are treated as missing; ingestion falls back to now.
        if value is None or isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            except ValueError:
                return None
        return None

    @field_validator("crawled_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_payload(self) -> str:
        """Serialize in the queue wire format (camelCase ``crawledAt``)."""
        return self.model_dump_json(by_alias=True)


class ScoredResult(BaseModel):
    """One search hit: the best-scoring chunk of one document."""
    document_id: str
    url: str = ""
    title: str = ""
    snippet: str = ""
    score: float = 0.0
    text_score: float = 0.0
    vector_score: float = 0.0
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class IngestResult:
    """Outcome of ingesting one article."""
    document_id: str
    chunk_count: int
    added_at: datetime
    created: bool = False


@dataclass
class EnqueueResult:
    """Result of submitting a single seed URL."""
    url: str
    added: bool


@dataclass
class BulkEnqueueResult:
    """Result of submitting many seeds at once."""
    attempted: int
    added: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CacheHints:
    """Conditional-request hints recorded for a URL."""
    etag: Optional[str] = None
    last_modified: Optional[str] = None


@dataclass
class ResponseHints:
    """Caching headers observed on a fetch response."""
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    cache_control: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.etag or self.last_modified or self.cache_control)


@dataclass
class HostInfo:
    """A crawled hostname and when it was last crawled."""
    hostname: str
    last_crawled_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hostname": self.hostname,
            "last_crawled_at": self.last_crawled_at.isoformat() if self.last_crawled_at else None,
        }
