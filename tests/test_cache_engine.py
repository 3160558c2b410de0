"""
Unit tests for the table cache engine.

Covers read-through refresh, TTL expiry, secondary indices, failure
handling and single-flight refresh under concurrency.
"""
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

import pytest

from app.cache import (
    ErrorKind,
    InMemoryCacheStore,
    RequestCoalescer,
    TableCacheEngine,
)


# =============================================================================
# Test Fixtures
# =============================================================================

@dataclass(frozen=True)
class Row:
    id: str
    group: Optional[str] = None


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TickingClock(FakeClock):
    """Clock that moves forward a fixed step every time it is read."""

    def __init__(self, step: float, start: float = 1000.0):
        super().__init__(start)
        self.step = step

    def __call__(self) -> float:
        current = self.now
        self.now += self.step
        return current


class CountingSource:
    """Table source that records calls and can fail or block on demand."""

    def __init__(self, rows, gate: Optional[threading.Event] = None):
        self.rows = list(rows)
        self.error: Optional[Exception] = None
        self.gate = gate
        self.calls = 0
        self._lock = threading.Lock()

    def fetch_all(self):
        with self._lock:
            self.calls += 1
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return list(self.rows)


SUBJECT_ROWS = [Row("s1", "g1"), Row("s2", "g1"), Row("s3", "g2")]


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryCacheStore(clock=clock)


@pytest.fixture
def source():
    return CountingSource(SUBJECT_ROWS)


@pytest.fixture
def engine(source, store):
    engine = TableCacheEngine("subjects", source, store, ttl_seconds=60)
    engine.register_secondary_index("ByGroupId", lambda r: r.group)
    return engine


# =============================================================================
# Primary Index
# =============================================================================

class TestPrimaryIndex:
    """Tests for id lookups and full-table reads."""

    def test_every_fetched_row_readable_by_id(self, engine):
        for row in SUBJECT_ROWS:
            result = engine.read_by_id(row.id)
            assert result.is_ok
            assert result.value == row

    def test_unknown_id_is_not_found(self, engine):
        assert engine.read_all().is_ok

        result = engine.read_by_id("s9")

        assert result.is_failed
        assert result.has_error(ErrorKind.NOT_FOUND)
        assert not result.error.is_transient

    def test_read_all_preserves_source_order(self, engine):
        result = engine.read_all()
        assert result.value == SUBJECT_ROWS

    def test_empty_table_is_success(self, store):
        engine = TableCacheEngine("empty", CountingSource([]), store, ttl_seconds=60)

        result = engine.read_all()

        assert result.is_ok
        assert result.is_empty

    def test_duplicate_ids_last_row_wins(self, store):
        rows = [Row("a", "g1"), Row("a", "g2")]
        engine = TableCacheEngine("dupes", CountingSource(rows), store, ttl_seconds=60)

        assert engine.read_by_id("a").value == Row("a", "g2")
        assert engine.read_all().value == rows

    def test_read_by_ids_keeps_caller_order_and_drops_unknown(self, engine):
        result = engine.read_by_ids(["s3", "nope", "s1"])
        assert [r.id for r in result.value] == ["s3", "s1"]

    def test_custom_id_function(self, store):
        records = [{"key": "x"}, {"key": "y"}]
        engine = TableCacheEngine(
            "dicts", CountingSource(records), store, ttl_seconds=60, id_fn=lambda r: r["key"]
        )
        assert engine.read_by_id("y").value == {"key": "y"}


# =============================================================================
# Secondary Indices
# =============================================================================

class TestSecondaryIndex:
    """Tests for derived groupings."""

    def test_group_lookup_in_fetch_order(self, engine):
        engine.read_all()

        result = engine.read_by_group_key("ByGroupId", "g1")

        assert [r.id for r in result.value] == ["s1", "s2"]

    def test_key_without_rows_is_empty_success(self, engine):
        engine.read_all()

        result = engine.read_by_group_key("ByGroupId", "g3")

        assert result.is_ok
        assert result.value == []
        assert result.is_empty

    def test_cold_index_unavailable_without_fetching(self, engine, source):
        result = engine.read_by_group_key("ByGroupId", "g1")

        assert result.has_error(ErrorKind.INDEX_UNAVAILABLE)
        assert result.error.is_transient
        assert source.calls == 0

    def test_lookup_group_warms_table(self, engine, source):
        result = engine.lookup_group("ByGroupId", "g2")

        assert [r.id for r in result.value] == ["s3"]
        assert source.calls == 1

    def test_rows_without_key_are_excluded(self, store):
        rows = [Row("a", None), Row("b", ""), Row("c", "g1")]
        engine = TableCacheEngine("partial", CountingSource(rows), store, ttl_seconds=60)
        engine.register_secondary_index("ByGroupId", lambda r: r.group)
        engine.read_all()

        found, index = store.try_get(engine.index_key("ByGroupId"))

        assert found
        assert list(index.groups) == ["g1"]

    def test_lookup_unique_returns_first_match(self, engine):
        assert engine.lookup_unique("ByGroupId", "g1").value.id == "s1"
        assert engine.lookup_unique("ByGroupId", "g9").has_error(ErrorKind.NOT_FOUND)

    def test_unregistered_index_raises(self, engine):
        engine.read_all()
        with pytest.raises(KeyError):
            engine.read_by_group_key("ByTeacherId", "t1")

    def test_duplicate_registration_raises(self, engine):
        with pytest.raises(ValueError):
            engine.register_secondary_index("ByGroupId", lambda r: r.group)

    def test_index_registered_after_warm_triggers_rebuild(self, engine, source):
        engine.read_all()
        engine.register_secondary_index("ById", lambda r: r.id)

        result = engine.lookup_group("ById", "s2")

        assert [r.id for r in result.value] == ["s2"]
        assert source.calls == 2

    def test_cache_keys_namespaced_by_table(self, engine):
        assert engine.primary_key == "subjects:primary"
        assert engine.index_key("ByGroupId") == "subjects:index:ByGroupId"


# =============================================================================
# Expiry and Consistency
# =============================================================================

class TestExpiry:
    """Tests for TTL behaviour and refresh generations."""

    def test_reads_inside_window_do_not_refetch(self, engine, source, clock):
        engine.read_all()
        clock.advance(59)
        engine.read_by_id("s1")
        engine.lookup_group("ByGroupId", "g1")

        assert source.calls == 1

    def test_expiry_triggers_exactly_one_fetch(self, engine, source, clock):
        engine.read_all()
        clock.advance(60)

        engine.read_by_id("s1")
        engine.read_by_id("s2")

        assert source.calls == 2
        assert engine.generation == 2

    def test_grouping_read_across_ttl_boundary(self):
        # Every store read moves time by 1s; entries live 2.5s, so they are
        # still warm for the two reads of the warm check and expired on a third
        store = InMemoryCacheStore(clock=TickingClock(step=1.0))
        source = CountingSource(SUBJECT_ROWS)
        engine = TableCacheEngine("subjects", source, store, ttl_seconds=2.5)
        engine.register_secondary_index("ByGroupId", lambda r: r.group)
        engine.read_all()

        result = engine.lookup_group("ByGroupId", "g1")

        assert result.is_ok
        assert [r.id for r in result.value] == ["s1", "s2"]
        assert source.calls == 1

    def test_grouping_matches_primary_generation(self, engine, store, source, clock):
        engine.read_all()
        clock.advance(61)
        source.rows = [Row("s7", "g1")]

        result = engine.lookup_group("ByGroupId", "g1")
        _, primary = store.try_get(engine.primary_key)

        assert [r.id for r in result.value] == ["s7"]
        assert primary.generation == 2

    def test_refresh_picks_up_new_rows(self, engine, source, clock):
        engine.read_all()
        source.rows = [Row("s4", "g1")]
        clock.advance(61)

        assert engine.read_by_id("s1").has_error(ErrorKind.NOT_FOUND)
        assert [r.id for r in engine.read_by_group_key("ByGroupId", "g1").value] == ["s4"]

    def test_all_entries_share_generation(self, engine, store):
        engine.read_all()
        engine.refresh(force=True)

        _, primary = store.try_get(engine.primary_key)
        _, index = store.try_get(engine.index_key("ByGroupId"))

        assert primary.generation == index.generation == 2

    def test_evicted_index_makes_table_cold(self, engine, source, store):
        engine.read_all()
        store.delete(engine.index_key("ByGroupId"))

        assert engine.read_by_id("s1").is_ok
        assert source.calls == 2
        assert engine.read_by_group_key("ByGroupId", "g1").is_ok

    def test_invalidate_drops_all_entries(self, engine, source):
        engine.read_all()

        assert engine.invalidate() == 2
        assert engine.read_by_group_key("ByGroupId", "g1").has_error(ErrorKind.INDEX_UNAVAILABLE)
        engine.read_all()
        assert source.calls == 2


# =============================================================================
# Fetch Failures
# =============================================================================

class TestFetchFailures:
    """Tests for source errors surfacing as results."""

    def test_failure_on_cold_table(self, engine, source):
        source.error = ConnectionError("quota exceeded")

        result = engine.read_by_id("s1")

        assert result.has_error(ErrorKind.FETCH_FAILED)
        assert isinstance(result.error.cause, ConnectionError)
        assert engine.read_all().has_error(ErrorKind.FETCH_FAILED)

    def test_failure_never_mixes_generations(self, engine, source, store, clock):
        engine.read_all()
        source.error = RuntimeError("boom")

        assert engine.refresh(force=True).is_failed
        assert engine.refresh(force=True).is_failed

        _, primary = store.try_get(engine.primary_key)
        _, index = store.try_get(engine.index_key("ByGroupId"))
        assert primary.generation == index.generation == 1
        assert [r.id for r in engine.read_by_group_key("ByGroupId", "g1").value] == ["s1", "s2"]

    def test_failures_after_expiry_leave_table_cold(self, engine, source, clock):
        engine.read_all()
        clock.advance(120)
        source.error = RuntimeError("boom")

        assert engine.read_by_id("s1").has_error(ErrorKind.FETCH_FAILED)
        assert engine.read_by_id("s1").has_error(ErrorKind.FETCH_FAILED)
        assert engine.read_by_group_key("ByGroupId", "g1").has_error(ErrorKind.INDEX_UNAVAILABLE)

    def test_next_call_retries_after_failure(self, engine, source):
        source.error = RuntimeError("boom")
        assert engine.read_all().is_failed

        source.error = None
        assert engine.read_all().is_ok
        assert source.calls == 2

    def test_stats_count_failures(self, engine, source):
        source.error = RuntimeError("boom")
        engine.read_all()

        stats = engine.get_stats()

        assert stats["fetch_failures"] == 1
        assert stats["refreshes"] == 0
        assert stats["misses"] == 1


# =============================================================================
# Single-flight Refresh
# =============================================================================

class TestSingleFlight:
    """Tests for concurrent callers against a cold table."""

    def test_concurrent_cold_reads_fetch_once(self, store):
        gate = threading.Event()
        source = CountingSource(SUBJECT_ROWS, gate=gate)
        coalescer = RequestCoalescer()
        engine = TableCacheEngine("subjects", source, store, ttl_seconds=60, coalescer=coalescer)
        engine.register_secondary_index("ByGroupId", lambda r: r.group)
        callers = 16

        with ThreadPoolExecutor(max_workers=callers) as pool:
            futures = [pool.submit(engine.read_all) for _ in range(callers)]
            assert wait_until(lambda: coalescer.get_stats()["coalesced_waits"] == callers - 1)
            gate.set()
            results = [f.result(timeout=5) for f in futures]

        assert source.calls == 1
        assert all(r.is_ok for r in results)
        assert all(r.value == SUBJECT_ROWS for r in results)
        assert engine.get_stats()["coalesced"] == callers - 1

    def test_concurrent_callers_share_failure(self, store):
        gate = threading.Event()
        source = CountingSource(SUBJECT_ROWS, gate=gate)
        source.error = RuntimeError("sheet unavailable")
        coalescer = RequestCoalescer()
        engine = TableCacheEngine("subjects", source, store, ttl_seconds=60, coalescer=coalescer)
        callers = 10

        with ThreadPoolExecutor(max_workers=callers) as pool:
            futures = [pool.submit(engine.read_by_id, "s1") for _ in range(callers)]
            assert wait_until(lambda: coalescer.get_stats()["coalesced_waits"] == callers - 1)
            gate.set()
            results = [f.result(timeout=5) for f in futures]

        assert source.calls == 1
        assert all(r.has_error(ErrorKind.FETCH_FAILED) for r in results)

    def test_refresh_after_waiting_skips_fetch_when_warm(self, engine, source):
        engine.read_all()

        result = engine.refresh()

        assert result.is_ok
        assert source.calls == 1
