"""
Core cache data structures and the result type returned by table lookups.
"""
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class TableName(str, Enum):
    """Logical tables served from the remote spreadsheet."""
    STUDENTS = "students"
    TEACHERS = "teachers"
    GROUPS = "groups"
    SUBJECTS = "subjects"
    SUBGROUPS = "subgroups"
    STATEMENTS = "statements"


class ErrorKind(Enum):
    """Expected failure outcomes of a lookup."""
    FETCH_FAILED = "fetch_failed"            # Source unreachable or errored, retryable
    NOT_FOUND = "not_found"                  # Valid query, no matching row
    INDEX_UNAVAILABLE = "index_unavailable"  # Secondary index not warm


@dataclass(frozen=True)
class TableError:
    """Describes why a lookup failed."""
    kind: ErrorKind
    table: str
    message: str
    cause: Optional[BaseException] = None

    @property
    def code(self) -> str:
        return self.kind.name

    @property
    def is_transient(self) -> bool:
        """True for failures the caller may fix by retrying later."""
        return self.kind in (ErrorKind.FETCH_FAILED, ErrorKind.INDEX_UNAVAILABLE)

    def to_dict(self) -> dict:
        return {"code": self.code, "table": self.table, "message": self.message}


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Either a value or a TableError.

    Lookups never raise for expected conditions; callers branch on
    ``is_ok`` / ``is_failed``. An empty list is a success (see ``is_empty``).
    """
    value: Optional[T] = None
    error: Optional[TableError] = None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(
        cls,
        kind: ErrorKind,
        table: str,
        message: str,
        cause: Optional[BaseException] = None,
    ) -> "Result[T]":
        return cls(error=TableError(kind=kind, table=table, message=message, cause=cause))

    @classmethod
    def from_error(cls, error: TableError) -> "Result[T]":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    @property
    def is_failed(self) -> bool:
        return self.error is not None

    @property
    def is_empty(self) -> bool:
        """Successful result carrying an empty collection."""
        if self.is_failed or self.value is None:
            return False
        try:
            return len(self.value) == 0  # type: ignore[arg-type]
        except TypeError:
            return False

    def has_error(self, kind: ErrorKind) -> bool:
        return self.error is not None and self.error.kind == kind

    def value_or(self, default: T) -> T:
        return self.value if self.is_ok else default

    def map(self, fn: Callable[[T], U]) -> "Result[U]":
        if self.error is not None:
            return Result.from_error(self.error)
        return Result.ok(fn(self.value))  # type: ignore[arg-type]


@dataclass
class CacheEntry:
    """A stored value with its absolute expiry on the store's clock."""
    value: Any
    expires_at: float
    stored_at: float = field(default_factory=time.monotonic)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class PrimaryIndex(Generic[T]):
    """
    Identifier-keyed snapshot of one refresh.

    ``rows`` keeps the source order (duplicates included); ``by_id`` resolves
    duplicate ids with the last row winning.
    """
    generation: int
    rows: Tuple[T, ...]
    by_id: Dict[str, T]
    built_at: datetime

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class SecondaryIndex(Generic[T]):
    """Grouping of rows by a derived key, built from the same refresh as its primary."""
    name: str
    generation: int
    groups: Dict[str, List[T]]

    def lookup(self, key: str) -> List[T]:
        return list(self.groups.get(key, ()))


@dataclass(frozen=True)
class TableSnapshot(Generic[T]):
    """A primary index together with the secondary indices of the same generation."""
    primary: PrimaryIndex[T]
    indexes: Dict[str, SecondaryIndex[T]]

    @property
    def generation(self) -> int:
        return self.primary.generation
