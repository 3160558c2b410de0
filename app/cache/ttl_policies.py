"""
Cache lifetime configuration per table.
"""
from typing import Dict, Mapping, Optional, Union

from .core import TableName


# Lifetime for tables without an explicit entry (in seconds)
DEFAULT_TABLE_TTL = 1200          # 20 minutes

# Tables that change more often than the rest
TTL_CONFIG: Dict[TableName, int] = {
    TableName.SUBJECTS: 360,      # 6 minutes, teachers edit links during the term
}


def get_ttl_for_table(
    table: Union[TableName, str],
    default_ttl: Optional[int] = None,
    overrides: Optional[Mapping[TableName, int]] = None,
) -> int:
    """
    Resolve the cache lifetime of a table.

    Lookup order: ``overrides``, then TTL_CONFIG, then ``default_ttl``
    (falling back to DEFAULT_TABLE_TTL).

    Args:
        table: Table name (enum member or its string value)
        default_ttl: Lifetime for tables without a specific entry
        overrides: Per-table lifetimes taking precedence over TTL_CONFIG

    Returns:
        Lifetime in seconds
    """
    try:
        table = TableName(table)
    except ValueError:
        return default_ttl if default_ttl is not None else DEFAULT_TABLE_TTL

    if overrides and table in overrides:
        return overrides[table]
    if table in TTL_CONFIG:
        return TTL_CONFIG[table]
    return default_ttl if default_ttl is not None else DEFAULT_TABLE_TTL


def ttl_overrides_from_settings(settings) -> Dict[TableName, int]:
    """Per-table lifetimes configured through the environment."""
    overrides: Dict[TableName, int] = {}
    if getattr(settings, "subjects_cache_ttl_seconds", None) is not None:
        overrides[TableName.SUBJECTS] = settings.subjects_cache_ttl_seconds
    return overrides
