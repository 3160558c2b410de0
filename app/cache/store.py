"""
Process-wide TTL key/value store shared by every table engine.
"""
import threading
import time
import logging
from collections import OrderedDict
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple

from .core import CacheEntry

logger = logging.getLogger("cache.store")


class CacheStore(Protocol):
    """
    Interface consumed by TableCacheEngine.

    ``try_get`` must report ``found=False`` for expired, evicted and
    never-written keys alike. Implementations are safe to call from many
    threads without external locking.
    """

    def try_get(self, key: str) -> Tuple[bool, Any]:
        ...

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        ...

    def set_many(self, entries: Mapping[str, Any], ttl_seconds: float) -> float:
        """Store all entries atomically under one expiry; returns that expiry."""
        ...

    def delete(self, key: str) -> bool:
        ...


class InMemoryCacheStore:
    """
    Thread-safe in-memory implementation of CacheStore.

    - Expiry is checked lazily on read and swept on write
    - ``max_entries`` bounds memory: expired entries go first, then the
      least recently written ones
    - ``clock`` is injectable so tests can move time forward
    """

    def __init__(
        self,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._max_entries = max_entries
        self._clock = clock
        self._stats = {
            "hits": 0,
            "misses": 0,
            "expired": 0,
            "evictions": 0,
            "writes": 0,
        }

    def try_get(self, key: str) -> Tuple[bool, Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return False, None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._stats["expired"] += 1
                self._stats["misses"] += 1
                logger.debug(f"Entry expired: {key}")
                return False, None
            self._stats["hits"] += 1
            return True, entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        self.set_many({key: value}, ttl_seconds)

    def set_many(self, entries: Mapping[str, Any], ttl_seconds: float) -> float:
        with self._lock:
            now = self._clock()
            expires_at = now + max(ttl_seconds, 0)
            for key, value in entries.items():
                self._entries.pop(key, None)
                self._entries[key] = CacheEntry(value=value, expires_at=expires_at, stored_at=now)
            self._stats["writes"] += len(entries)
            self._enforce_capacity(now)
            return expires_at

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            logger.info(f"Cleared {count} cache entries")
            return count

    def _enforce_capacity(self, now: float) -> None:
        if self._max_entries is None or len(self._entries) <= self._max_entries:
            return

        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
            self._stats["expired"] += 1

        while len(self._entries) > self._max_entries:
            key, _ = self._entries.popitem(last=False)
            self._stats["evictions"] += 1
            logger.info(f"Evicted cache entry under capacity pressure: {key}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._stats["hits"] + self._stats["misses"]
            hit_rate = (self._stats["hits"] / lookups * 100) if lookups > 0 else 0
            return {
                "entries": len(self._entries),
                "max_entries": self._max_entries,
                **self._stats,
                "hit_rate_percent": round(hit_rate, 1),
            }
