"""
Predicate and projection builders for row-store queries.

Invariants:
    - Clause order is fixed: soft-delete exclusion, partition key, row key,
      free-form filter. The same inputs always produce the same string.
    - Blank inputs contribute no clause
    - The free-form filter is appended verbatim

Example:
    >>> build_filter(True, "A", "B", "X eq 1")
    "IsDeleted eq false and PartitionKey eq 'A' and RowKey eq 'B' and X eq 1"
"""

from __future__ import annotations

from typing import Optional

from ..schema.types import (
    ETAG_COLUMN,
    IS_DELETED_COLUMN,
    PARTITION_KEY_COLUMN,
    ROW_KEY_COLUMN,
    TIMESTAMP_COLUMN,
    TypeMetadata,
)

_BASE_COLUMNS = (PARTITION_KEY_COLUMN, ROW_KEY_COLUMN, ETAG_COLUMN, TIMESTAMP_COLUMN)


def quote(value: str) -> str:
    """Render a string literal, doubling embedded single quotes."""
    return "'" + value.replace("'", "''") + "'"


def build_filter(
    use_soft_delete: bool = True,
    partition_key: Optional[str] = None,
    row_key: Optional[str] = None,
    filter: Optional[str] = None,
    include_soft_deleted: bool = False,
) -> str:
    """Build a query predicate.

    Args:
        use_soft_delete: Whether the table tags deleted rows with IsDeleted
        partition_key: Restrict to this partition
        row_key: Restrict to this row key
        filter: Extra predicate appended as-is
        include_soft_deleted: Keep rows tagged as deleted

    Returns:
        Predicate text; empty when nothing restricts the query
    """
    clauses: list[str] = []
    if use_soft_delete and not include_soft_deleted:
        clauses.append(f"{IS_DELETED_COLUMN} eq false")
    if partition_key and partition_key.strip():
        clauses.append(f"{PARTITION_KEY_COLUMN} eq {quote(partition_key)}")
    if row_key and row_key.strip():
        clauses.append(f"{ROW_KEY_COLUMN} eq {quote(row_key)}")
    if filter and filter.strip():
        clauses.append(filter)
    return " and ".join(clauses)


def build_columns(metadata: TypeMetadata, minimal: bool = False) -> list[str]:
    """List the columns to fetch for a mapped type.

    Args:
        metadata: Mapping of the type being read
        minimal: Only the reserved columns (keys, etag, timestamp)
    """
    columns = list(_BASE_COLUMNS)
    if minimal:
        return columns
    for name in metadata.column_names():
        if name not in columns:
            columns.append(name)
    if metadata.use_soft_delete and IS_DELETED_COLUMN not in columns:
        columns.append(IS_DELETED_COLUMN)
    return columns
