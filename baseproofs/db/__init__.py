"""
Local Cache Layer for BaseProofs

Provides:
- PromiseCache abstraction (InMemory for dev, JSON file, Postgres for prod)
- Driver selection and connection configuration
"""

from .cache import (
    PromiseCache,
    InMemoryPromiseCache,
    JsonFilePromiseCache,
    PostgresPromiseCache,
    CacheError,
)
from .config import CacheDriver, DatabaseConfig, get_cache_driver, get_cache_path, get_database_url

__all__ = [
    "PromiseCache",
    "InMemoryPromiseCache",
    "JsonFilePromiseCache",
    "PostgresPromiseCache",
    "CacheError",
    "CacheDriver",
    "DatabaseConfig",
    "get_cache_driver",
    "get_cache_path",
    "get_database_url",
]
