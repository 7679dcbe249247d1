from __future__ import annotations
import logging
import sys
import json
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from pathlib import Path

# Attributes every LogRecord has; anything else came in through ``extra=``.
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

QUIET_LOGGERS = ("uvicorn.access", "asyncpg", "aiohttp.access", "httpx")


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields attached to a record through ``extra=`` or a bound logger."""
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


class JSONFormatter(logging.Formatter):
    """One JSON object per line; bound context is merged at the top level."""

    def __init__(self, service_name: str = "crawlsearch"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": self.service_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(record_context(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable line with trailing ``key=value`` context, colored on a TTY."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        line = f"{timestamp} {record.levelname:<8} {record.name}: {record.getMessage()}"

        context = record_context(record)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in sorted(context.items())) + "]"

        if self.use_colors and record.levelname in self.COLORS:
            line = f"{self.COLORS[record.levelname]}{line}{self.RESET}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that adds fixed context (``source_key``, ``url``...) to every record."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **context) -> "ContextLogger":
        return ContextLogger(self.logger, {**self.extra, **context})


def bind_logger(logger: logging.Logger, **context) -> ContextLogger:
    return ContextLogger(logger, context)


def setup_logging(
    level: str = "INFO",
    service_name: str = "crawlsearch",
    log_file: Optional[str] = None,
    use_json: bool = False,
    use_colors: bool = True
) -> None:
    """Configure the root logger for one crawlsearch process.

    Args:
        level: Log level name; unknown names fall back to INFO
        service_name: Process role (``crawlsearch-api``, ``crawlsearch-indexer``...)
        log_file: Optional path; the file always receives JSON lines
        use_json: JSON lines on stdout instead of the console format
        use_colors: Color console lines when stdout is a terminal
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)

    console_handler = logging.StreamHandler(sys.stdout)
    if use_json:
        console_handler.setFormatter(JSONFormatter(service_name))
    else:
        console_handler.setFormatter(ConsoleFormatter(use_colors and sys.stdout.isatty()))
    root_logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter(service_name))
        root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
