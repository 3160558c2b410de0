"""
Per-table lookup facades over TableCacheEngine.

Each facade declares the groupings its table needs and exposes them as
named lookups. Grouping lookups warm the table first, so callers never see
INDEX_UNAVAILABLE while the source is reachable.
"""
import threading
import logging
from dataclasses import dataclass
from operator import attrgetter
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, Type, TypeVar

from app.cache import (
    InMemoryCacheStore,
    RequestCoalescer,
    Result,
    TableCacheEngine,
    TableName,
    get_ttl_for_table,
    ttl_overrides_from_settings,
)
from app.models import GroupRow, StatementRow, StudentRow, SubgroupRow, SubjectRow, TeacherRow
from app.table_source import HttpTableSource, TableSource

logger = logging.getLogger("tables")

T = TypeVar("T")

BY_TELEGRAM_ID = "ByTelegramId"
BY_GROUP_ID = "ByGroupId"
BY_TEACHER_ID = "ByTeacherId"
BY_SUBJECT_ID = "BySubjectId"


class BaseTable(Generic[T]):
    """Lookups shared by every table."""

    table_name: TableName
    row_type: Type[Any]
    indexes: Dict[str, Callable[[Any], Optional[str]]] = {}

    def __init__(self, engine: TableCacheEngine):
        self.engine = engine
        for name, key_fn in self.indexes.items():
            engine.register_secondary_index(name, key_fn)

    def read_all(self) -> Result[List[T]]:
        return self.engine.read_all()

    def read_by_id(self, row_id: str) -> Result[T]:
        return self.engine.read_by_id(row_id)

    def read_by_ids(self, ids: Iterable[str]) -> Result[List[T]]:
        return self.engine.read_by_ids(ids)

    def read_by_group_key(self, name: str, key: str) -> Result[List[T]]:
        """Raw grouping read; does not refresh the table."""
        return self.engine.read_by_group_key(name, key)

    def refresh(self, force: bool = False) -> Result:
        return self.engine.refresh(force=force)

    def invalidate(self) -> int:
        return self.engine.invalidate()

    def get_stats(self) -> Dict[str, Any]:
        return self.engine.get_stats()


class StudentsTable(BaseTable[StudentRow]):
    table_name = TableName.STUDENTS
    row_type = StudentRow
    indexes = {
        BY_TELEGRAM_ID: attrgetter("telegram_id"),
        BY_GROUP_ID: attrgetter("group_id"),
    }

    def read_by_telegram_id(self, telegram_id: str) -> Result[StudentRow]:
        return self.engine.lookup_unique(BY_TELEGRAM_ID, telegram_id)

    def read_by_group_id(self, group_id: str) -> Result[List[StudentRow]]:
        return self.engine.lookup_group(BY_GROUP_ID, group_id)


class TeachersTable(BaseTable[TeacherRow]):
    table_name = TableName.TEACHERS
    row_type = TeacherRow
    indexes = {
        BY_TELEGRAM_ID: attrgetter("telegram_id"),
    }

    def read_by_telegram_id(self, telegram_id: str) -> Result[TeacherRow]:
        return self.engine.lookup_unique(BY_TELEGRAM_ID, telegram_id)


class GroupsTable(BaseTable[GroupRow]):
    table_name = TableName.GROUPS
    row_type = GroupRow


class SubjectsTable(BaseTable[SubjectRow]):
    table_name = TableName.SUBJECTS
    row_type = SubjectRow
    indexes = {
        BY_GROUP_ID: attrgetter("group_id"),
        BY_TEACHER_ID: attrgetter("teacher_id"),
    }

    def read_by_group_id(self, group_id: str) -> Result[List[SubjectRow]]:
        return self.engine.lookup_group(BY_GROUP_ID, group_id)

    def read_by_teacher_id(self, teacher_id: str) -> Result[List[SubjectRow]]:
        return self.engine.lookup_group(BY_TEACHER_ID, teacher_id)


class SubgroupsTable(BaseTable[SubgroupRow]):
    table_name = TableName.SUBGROUPS
    row_type = SubgroupRow
    indexes = {
        BY_TEACHER_ID: attrgetter("teacher_id"),
        BY_SUBJECT_ID: attrgetter("subject_id"),
    }

    def read_by_teacher_id(self, teacher_id: str) -> Result[List[SubgroupRow]]:
        return self.engine.lookup_group(BY_TEACHER_ID, teacher_id)

    def read_by_subject_id(self, subject_id: str) -> Result[List[SubgroupRow]]:
        return self.engine.lookup_group(BY_SUBJECT_ID, subject_id)


class StatementsTable(BaseTable[StatementRow]):
    table_name = TableName.STATEMENTS
    row_type = StatementRow
    indexes = {
        BY_SUBJECT_ID: attrgetter("subject_id"),
    }

    def read_by_subject_id(self, subject_id: str) -> Result[List[StatementRow]]:
        return self.engine.lookup_group(BY_SUBJECT_ID, subject_id)


TABLE_TYPES = (
    StudentsTable,
    TeachersTable,
    GroupsTable,
    SubjectsTable,
    SubgroupsTable,
    StatementsTable,
)


@dataclass
class TableRegistry:
    """One facade per table, all sharing a single cache store."""
    store: InMemoryCacheStore
    students: StudentsTable
    teachers: TeachersTable
    groups: GroupsTable
    subjects: SubjectsTable
    subgroups: SubgroupsTable
    statements: StatementsTable

    def all_tables(self) -> Dict[str, BaseTable]:
        return {
            table.table_name.value: table
            for table in (
                self.students,
                self.teachers,
                self.groups,
                self.subjects,
                self.subgroups,
                self.statements,
            )
        }

    def get(self, name: str) -> BaseTable:
        """
        Raises:
            KeyError: For an unknown table name
        """
        return self.all_tables()[name]

    def get_stats(self) -> Dict[str, Any]:
        return {
            "store": self.store.get_stats(),
            "tables": {name: table.get_stats() for name, table in self.all_tables().items()},
        }


def build_table_registry(
    sources: Mapping[TableName, TableSource],
    store: Optional[InMemoryCacheStore] = None,
    app_settings=None,
    coalescer: Optional[RequestCoalescer] = None,
) -> TableRegistry:
    """
    Wire one engine per table over a shared store.

    Args:
        sources: Row source for every TableName
        store: Shared cache store (a fresh one if omitted)
        app_settings: Settings for TTLs and store capacity (module settings if omitted)
        coalescer: Single-flight coordinator shared by the engines
    """
    if app_settings is None:
        from config.settings import settings as app_settings

    if store is None:
        store = InMemoryCacheStore(max_entries=app_settings.cache_max_entries)
    if coalescer is None:
        coalescer = RequestCoalescer(timeout=app_settings.coalesce_timeout_seconds)

    overrides = ttl_overrides_from_settings(app_settings)
    facades: Dict[str, BaseTable] = {}
    for table_cls in TABLE_TYPES:
        ttl = get_ttl_for_table(
            table_cls.table_name,
            default_ttl=app_settings.table_cache_ttl_seconds,
            overrides=overrides,
        )
        engine = TableCacheEngine(
            table_cls.table_name,
            sources[table_cls.table_name],
            store,
            ttl_seconds=ttl,
            coalescer=coalescer,
        )
        facades[table_cls.table_name.value] = table_cls(engine)
        logger.debug(f"Configured table {table_cls.table_name.value} (ttl={ttl}s)")

    return TableRegistry(store=store, **facades)


def http_sources(app_settings) -> Dict[TableName, HttpTableSource]:
    """HTTP sources for every table, configured from settings."""
    return {
        table_cls.table_name: HttpTableSource(
            table_cls.table_name.value,
            table_cls.row_type.from_record,
            base_url=app_settings.tables_base_url,
            api_key=app_settings.tables_api_key,
            timeout=app_settings.tables_request_timeout,
            retry_attempts=app_settings.tables_retry_attempts,
        )
        for table_cls in TABLE_TYPES
    }


# Global registry instance
_registry: Optional[TableRegistry] = None
_registry_lock = threading.Lock()


def get_table_registry() -> TableRegistry:
    """Get or create the process-wide table registry."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                from config.settings import settings
                _registry = build_table_registry(http_sources(settings), app_settings=settings)
    return _registry
