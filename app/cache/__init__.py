"""
Table caching engine: read-through TTL cache, secondary indices, single-flight refresh.
"""
from .core import (
    CacheEntry,
    ErrorKind,
    PrimaryIndex,
    Result,
    SecondaryIndex,
    TableError,
    TableSnapshot,
    TableName,
)
from .ttl_policies import (
    DEFAULT_TABLE_TTL,
    TTL_CONFIG,
    get_ttl_for_table,
    ttl_overrides_from_settings,
)
from .coalescer import RequestCoalescer
from .store import CacheStore, InMemoryCacheStore
from .engine import TableCacheEngine

__all__ = [
    # Core types
    "CacheEntry",
    "ErrorKind",
    "PrimaryIndex",
    "Result",
    "SecondaryIndex",
    "TableError",
    "TableSnapshot",
    "TableName",
    # TTL policies
    "DEFAULT_TABLE_TTL",
    "TTL_CONFIG",
    "get_ttl_for_table",
    "ttl_overrides_from_settings",
    # Coalescing
    "RequestCoalescer",
    # Store
    "CacheStore",
    "InMemoryCacheStore",
    # Engine
    "TableCacheEngine",
]
