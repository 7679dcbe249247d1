"""Configuration module for crawlsearch.

Provides configuration for the database, Redis keys, indexing and search.
"""

from .settings import (
    Settings,
    PostgresConfig,
    RedisConfig,
    IndexingConfig,
    SearchConfig,
    FetchConfig,
    LoggingConfig
)

__all__ = [
    'Settings',
    'PostgresConfig',
    'RedisConfig',
    'IndexingConfig',
    'SearchConfig',
    'FetchConfig',
    'LoggingConfig'
]
