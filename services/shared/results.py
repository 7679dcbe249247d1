"""Tagged results for best-effort steps.

A step that may degrade returns an ``Outcome`` instead of raising, so the
caller can log the warning, continue, and tests can assert on the degraded
path directly.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar
from urllib.parse import urlsplit

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Value of a best-effort step plus an optional degradation warning."""
    value: Optional[T] = None
    warning: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.warning is not None

    @classmethod
    def ok(cls, value: Optional[T]) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def degrade(cls, warning: str, value: Optional[T] = None) -> "Outcome[T]":
        return cls(value=value, warning=warning)


def derive_hostname(url: str) -> Outcome[str]:
    """Extract the lowercase hostname from ``url``."""
    try:
        hostname = urlsplit(url).hostname
    except ValueError as e:
        return Outcome.degrade(f"Failed to parse hostname for URL {url}: {e}")

    if not hostname:
        return Outcome.degrade(f"URL {url} has no hostname")
    return Outcome.ok(hostname.lower())


def parse_metadata(raw: Any) -> Outcome[Dict[str, Any]]:
    """Decode stored document metadata.

    JSONB columns normally arrive as text from asyncpg. ``None`` is a valid
    "no metadata" value; anything that is not a JSON object degrades to
    ``None``.
    """
    if raw is None:
        return Outcome.ok(None)

    if isinstance(raw, dict):
        return Outcome.ok(raw)

    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")

    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except ValueError as e:
            return Outcome.degrade(f"Malformed metadata: {e}")
        if isinstance(decoded, dict):
            return Outcome.ok(decoded)
        return Outcome.degrade(f"Metadata is not an object: {type(decoded).__name__}")

    return Outcome.degrade(f"Unsupported metadata type: {type(raw).__name__}")
