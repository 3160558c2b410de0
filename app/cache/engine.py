"""
Read-through table cache with derived secondary indices.

One engine wraps one logical table. On the first read after expiry it pulls
the whole table from its source, builds the identifier index plus every
registered grouping, and stores them together under one expiry.
"""
import threading
import time
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar, Union

from .core import ErrorKind, PrimaryIndex, Result, SecondaryIndex, TableSnapshot
from .coalescer import RequestCoalescer
from .store import CacheStore

logger = logging.getLogger("cache.engine")

T = TypeVar("T")

KeyFn = Callable[[Any], Optional[str]]


def _row_id(row: Any) -> str:
    return row.id


class TableCacheEngine(Generic[T]):
    """
    Caches one table and its lookups:
    - Primary index by row id, rebuilt wholesale on every refresh
    - Named secondary indices grouping rows by a derived key
    - Single-flight refresh, so a cold table is fetched once however many
      threads ask for it at the same time

    The table counts as warm only while the primary entry and every
    registered index entry are present in the store with the same
    generation. Anything less is treated as cold.
    """

    def __init__(
        self,
        table: Union[str, Enum],
        source: Any,
        store: CacheStore,
        ttl_seconds: float,
        id_fn: Optional[Callable[[T], str]] = None,
        coalescer: Optional[RequestCoalescer] = None,
    ):
        """
        Args:
            table: Table identifier, used as the cache key namespace
            source: Object with ``fetch_all()`` returning the table's rows
            store: Shared cache store
            ttl_seconds: Lifetime of every entry written by a refresh
            id_fn: Extracts the identifier from a row (default ``row.id``)
            coalescer: Single-flight coordinator, shareable between engines
        """
        self.table = table.value if isinstance(table, Enum) else str(table)
        self.ttl_seconds = ttl_seconds
        self._source = source
        self._store = store
        self._id_fn = id_fn or _row_id
        self._coalescer = coalescer or RequestCoalescer()

        self._indexes: Dict[str, KeyFn] = {}
        self._indexes_lock = threading.Lock()

        self._generation = 0
        self._last_refresh: Optional[datetime] = None
        self._state_lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "refreshes": 0,
            "fetch_failures": 0,
            "coalesced": 0,
        }

    # ------------------------------------------------------------------
    # Keys and registration
    # ------------------------------------------------------------------

    @property
    def primary_key(self) -> str:
        return f"{self.table}:primary"

    def index_key(self, name: str) -> str:
        return f"{self.table}:index:{name}"

    @property
    def _refresh_key(self) -> str:
        return f"{self.table}:refresh"

    @property
    def index_names(self) -> List[str]:
        with self._indexes_lock:
            return list(self._indexes)

    @property
    def generation(self) -> int:
        with self._state_lock:
            return self._generation

    def register_secondary_index(self, name: str, key_fn: KeyFn) -> None:
        """
        Declare a grouping rebuilt on every refresh.

        ``key_fn`` returns the grouping key of a row, or None to leave the row
        out of this index. A table that is warm when a new index is registered
        reads as cold on the next lookup, since the new index has no entry yet.

        Raises:
            ValueError: If an index with this name is already registered
        """
        with self._indexes_lock:
            if name in self._indexes:
                raise ValueError(f"Index '{name}' is already registered on table '{self.table}'")
            self._indexes[name] = key_fn
        logger.debug(f"Registered index {name} on {self.table}")

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def _warm_snapshot(self) -> Optional[TableSnapshot]:
        found, primary = self._store.try_get(self.primary_key)
        if not found:
            return None
        indexes: Dict[str, SecondaryIndex] = {}
        for name in self.index_names:
            found, index = self._store.try_get(self.index_key(name))
            if not found or index.generation != primary.generation:
                return None
            indexes[name] = index
        return TableSnapshot(primary=primary, indexes=indexes)

    def _load(self) -> Result[TableSnapshot]:
        snapshot = self._warm_snapshot()
        if snapshot is not None:
            self._count("hits")
            logger.debug(f"CACHE HIT: {self.table} [generation={snapshot.generation}]")
            return Result.ok(snapshot)

        self._count("misses")
        logger.info(f"CACHE MISS: {self.table}")
        return self._refresh_snapshot(force=False)

    def ensure_fresh(self) -> Result[PrimaryIndex]:
        """Return the current primary index, refreshing the table first if it is cold."""
        return self._load().map(lambda snapshot: snapshot.primary)

    def refresh(self, force: bool = False) -> Result[PrimaryIndex]:
        """
        Rebuild the table from its source.

        Concurrent calls share one fetch. Without ``force`` a caller that
        finds the table already rebuilt by someone else returns that result
        instead of fetching again.

        Returns:
            The new (or already warm) primary index, or FETCH_FAILED. The
            cache keeps its previous contents when the fetch fails.
        """
        return self._refresh_snapshot(force).map(lambda snapshot: snapshot.primary)

    def _refresh_snapshot(self, force: bool) -> Result[TableSnapshot]:
        try:
            snapshot, initiated = self._coalescer.run(
                self._refresh_key, lambda: self._do_refresh(force)
            )
        except Exception as e:
            return Result.fail(
                ErrorKind.FETCH_FAILED,
                self.table,
                f"Failed to load table '{self.table}': {e}",
                cause=e,
            )

        if not initiated:
            self._count("coalesced")
        return Result.ok(snapshot)

    def _do_refresh(self, force: bool) -> TableSnapshot:
        if not force:
            snapshot = self._warm_snapshot()
            if snapshot is not None:
                logger.debug(f"Table {self.table} already refreshed by another caller")
                return snapshot

        started = time.monotonic()
        try:
            rows = list(self._source.fetch_all())
        except Exception as e:
            self._count("fetch_failures")
            logger.warning(f"Fetch failed for table {self.table}: {e}")
            raise

        with self._indexes_lock:
            indexes = list(self._indexes.items())

        with self._state_lock:
            self._generation += 1
            generation = self._generation

        snapshot, entries = self._build(rows, indexes, generation)
        self._store.set_many(entries, self.ttl_seconds)

        with self._state_lock:
            self._last_refresh = snapshot.primary.built_at
            self._stats["refreshes"] += 1

        logger.info(
            f"Refreshed {self.table}: {len(rows)} rows, {len(indexes)} indices, "
            f"generation={generation} in {time.monotonic() - started:.2f}s"
        )
        return snapshot

    def _build(
        self,
        rows: List[T],
        indexes: List[Tuple[str, KeyFn]],
        generation: int,
    ) -> Tuple[TableSnapshot, Dict[str, Any]]:
        by_id: Dict[str, T] = {}
        for row in rows:
            row_id = self._id_fn(row)
            if row_id in by_id:
                logger.debug(f"Duplicate id {row_id} in {self.table}, keeping the later row")
            by_id[row_id] = row

        primary = PrimaryIndex(
            generation=generation,
            rows=tuple(rows),
            by_id=by_id,
            built_at=datetime.utcnow(),
        )
        entries: Dict[str, Any] = {self.primary_key: primary}
        built: Dict[str, SecondaryIndex] = {}

        for name, key_fn in indexes:
            groups: Dict[str, List[T]] = {}
            for row in rows:
                key = key_fn(row)
                if key is None or key == "":
                    continue
                groups.setdefault(str(key), []).append(row)
            built[name] = SecondaryIndex(name=name, generation=generation, groups=groups)
            entries[self.index_key(name)] = built[name]

        return TableSnapshot(primary=primary, indexes=built), entries

    def invalidate(self) -> int:
        """
        Drop every entry of this table so the next read refreshes.

        Returns:
            Number of entries removed
        """
        removed = 0
        for key in [self.primary_key] + [self.index_key(n) for n in self.index_names]:
            if self._store.delete(key):
                removed += 1
        logger.info(f"Invalidated table {self.table} ({removed} entries)")
        return removed

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def read_all(self) -> Result[List[T]]:
        """All rows in source order. An empty table is a success."""
        return self.ensure_fresh().map(lambda primary: list(primary.rows))

    def read_by_id(self, row_id: str) -> Result[T]:
        snapshot = self.ensure_fresh()
        if snapshot.is_failed:
            return Result.from_error(snapshot.error)

        row = snapshot.value.by_id.get(row_id)
        if row is None:
            return Result.fail(
                ErrorKind.NOT_FOUND,
                self.table,
                f"No row with id '{row_id}' in table '{self.table}'",
            )
        return Result.ok(row)

    def read_by_ids(self, ids: Iterable[str]) -> Result[List[T]]:
        """Rows for the given ids in the caller's order; unknown ids are skipped."""
        snapshot = self.ensure_fresh()
        if snapshot.is_failed:
            return Result.from_error(snapshot.error)

        by_id = snapshot.value.by_id
        return Result.ok([by_id[row_id] for row_id in ids if row_id in by_id])

    def read_by_group_key(self, name: str, key: str) -> Result[List[T]]:
        """
        Rows sharing ``key`` in the grouping ``name``.

        Reads the index as it is in the store and never refreshes: a missing
        entry is INDEX_UNAVAILABLE, a key without rows is an empty success.

        Raises:
            KeyError: If no index called ``name`` is registered
        """
        if name not in self.index_names:
            raise KeyError(f"No index '{name}' registered on table '{self.table}'")

        found, index = self._store.try_get(self.index_key(name))
        if not found:
            return Result.fail(
                ErrorKind.INDEX_UNAVAILABLE,
                self.table,
                f"Index '{name}' of table '{self.table}' is not loaded",
            )
        return Result.ok(index.lookup(key))

    def lookup_group(self, name: str, key: str) -> Result[List[T]]:
        """
        Warm the table if needed, then read the grouping.

        The grouping comes from the same snapshot the warm check or refresh
        produced, so it matches the primary generation and cannot disappear
        from the store in between.

        Raises:
            KeyError: If no index called ``name`` is registered
        """
        if name not in self.index_names:
            raise KeyError(f"No index '{name}' registered on table '{self.table}'")

        snapshot = self._load()
        if snapshot.is_ok and name not in snapshot.value.indexes:
            # Shared a refresh that started before this index was registered
            snapshot = self._refresh_snapshot(force=False)
        if snapshot.is_failed:
            return Result.from_error(snapshot.error)

        index = snapshot.value.indexes.get(name)
        if index is None:
            return Result.fail(
                ErrorKind.INDEX_UNAVAILABLE,
                self.table,
                f"Index '{name}' of table '{self.table}' is not loaded",
            )
        return Result.ok(index.lookup(key))

    def lookup_unique(self, name: str, key: str) -> Result[T]:
        """First row of a grouping that is expected to hold one row per key."""
        rows = self.lookup_group(name, key)
        if rows.is_failed:
            return Result.from_error(rows.error)
        if not rows.value:
            return Result.fail(
                ErrorKind.NOT_FOUND,
                self.table,
                f"No row with {name} '{key}' in table '{self.table}'",
            )
        return Result.ok(rows.value[0])

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def _count(self, stat: str) -> None:
        with self._state_lock:
            self._stats[stat] += 1

    def get_stats(self) -> Dict[str, Any]:
        with self._state_lock:
            lookups = self._stats["hits"] + self._stats["misses"]
            hit_rate = (self._stats["hits"] / lookups * 100) if lookups > 0 else 0
            return {
                "table": self.table,
                "ttl_seconds": self.ttl_seconds,
                "generation": self._generation,
                "last_refresh": self._last_refresh.isoformat() + "Z" if self._last_refresh else None,
                "indices": self.index_names,
                **self._stats,
                "hit_rate_percent": round(hit_rate, 1),
            }
