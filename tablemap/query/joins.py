"""
Join emulation over a key/value row store.

The row store has no joins, so related-table joins are emulated as a
per-row semi-join: for each primary row, a filter template is filled in
from that row's values and probed against the related table with a
result cap of one.

    RETAIN_WHEN_HAS_ANY   keep the row if the probe finds anything
    RETAIN_WHEN_EMPTY     keep the row if the probe finds nothing

Invariants:
    - Output order equals input order
    - Probes run one at a time; N primary rows cost N probes per join
    - A token whose value is missing or null becomes a bare null, even
      when the template quotes it

Example:
    >>> substitute("PartitionKey eq '$(PartitionKey)'", row)
    "PartitionKey eq 'P'"
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Mapping, Optional, Sequence, Union

from ..rows.entity import TableEntity
from ..schema.edm import format_value, to_native
from ..schema.registry import require_mappable
from ..schema.types import (
    ETAG_COLUMN,
    IS_DELETED_COLUMN,
    PARTITION_KEY_COLUMN,
    ROW_KEY_COLUMN,
    TIMESTAMP_COLUMN,
    FieldDescriptor,
    TypeMetadata,
)
from ..store.base import TableStore

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"""(['"]?)\$\((\w+)\)\1""")

_NULL = "null"

Rows = Union[Iterable[TableEntity], AsyncIterable[TableEntity]]


class JoinType(Enum):
    """When a primary row survives a join probe."""

    RETAIN_WHEN_HAS_ANY = "retain_when_has_any"
    RETAIN_WHEN_EMPTY = "retain_when_empty"


class RelatedJoin:
    """A join against a related mapped type.

    Attributes:
        related_type: Mapped type whose table is probed
        join_type: Retention rule
        filter: Predicate template with $(Column) tokens
        metadata: Mapping of the related type

    Raises:
        DefinitionError: If the related type is not a mappable table type
    """

    def __init__(self, related_type: type, join_type: JoinType, filter: str) -> None:
        self.metadata: TypeMetadata = require_mappable(related_type)
        self.related_type = related_type
        self.join_type = join_type
        self.filter = filter

    def __repr__(self) -> str:
        return (
            f"RelatedJoin({self.related_type.__name__}, {self.join_type.name}, "
            f"filter={self.filter!r})"
        )


def row_values(row: TableEntity) -> dict[str, Any]:
    """Values a template can reference for a row (reserved names included)."""
    return row.to_dict()


def substitute(template: str, row: Union[TableEntity, Mapping[str, Any]]) -> str:
    """Fill $(Name) tokens of a template from a row.

    Args:
        template: Predicate text containing $(Name) tokens
        row: Row (or name -> value mapping) supplying the values

    Returns:
        Predicate text with every token replaced
    """
    values = row_values(row) if isinstance(row, TableEntity) else row

    def replace(match: re.Match) -> str:
        quote, name = match.group(1), match.group(2)
        value = values.get(name)
        if value is None:
            return _NULL
        text = format_value(value)
        if quote == "'":
            return "'" + text.replace("'", "''") + "'"
        return f"{quote}{text}{quote}"

    return _TOKEN_RE.sub(replace, template)


async def probe(store: TableStore, table_name: str, predicate: str) -> bool:
    """Whether any row of a table matches a predicate."""
    async for _ in store.query(table_name, filter=predicate, top=1):
        return True
    return False


async def _retained(
    store: TableStore, values: Mapping[str, Any], joins: Sequence[RelatedJoin]
) -> bool:
    for join in joins:
        predicate = substitute(join.filter, values)
        found = await probe(store, join.metadata.table_name, predicate)
        keep = found if join.join_type is JoinType.RETAIN_WHEN_HAS_ANY else not found
        logger.debug(
            "Join probe",
            extra={"table": join.metadata.table_name, "filter": predicate, "found": found},
        )
        if not keep:
            return False
    return True


async def _iterate(rows: Rows) -> AsyncIterator[Any]:
    if hasattr(rows, "__aiter__"):
        async for row in rows:
            yield row
    else:
        for row in rows:
            yield row


async def filter_rows(
    store: TableStore, rows: Rows, joins: Sequence[RelatedJoin]
) -> AsyncIterator[TableEntity]:
    """Lazily keep the rows that satisfy every join.

    Joins are evaluated in order; the first rejecting join stops the
    remaining probes for that row.
    """
    async for row in _iterate(rows):
        if not joins or await _retained(store, row_values(row), joins):
            yield row


def filter_related(
    store: TableStore,
    rows: Rows,
    related_type: type,
    template: str,
    join_type: JoinType = JoinType.RETAIN_WHEN_HAS_ANY,
) -> AsyncIterator[TableEntity]:
    """Single-join form of filter_rows().

    Raises:
        DefinitionError: If related_type is not a mappable table type
    """
    return filter_rows(store, rows, [RelatedJoin(related_type, join_type, template)])


def _object_values(metadata: TypeMetadata, item: Any) -> dict[str, Any]:
    # reserved and column names as they would be stored, then member names
    values: dict[str, Any] = {
        PARTITION_KEY_COLUMN: _key_value(metadata.partition_key_field, item),
        ROW_KEY_COLUMN: _key_value(metadata.row_key_field, item),
        ETAG_COLUMN: _member(metadata.etag_field, item),
        TIMESTAMP_COLUMN: _member(metadata.timestamp_field, item),
    }
    if metadata.use_soft_delete:
        values[IS_DELETED_COLUMN] = False
    for desc in metadata.column_fields:
        value = getattr(item, desc.name, None)
        if value is not None:
            if desc.json_encode:
                value = desc.adapter.dump_json(value).decode("utf-8")
            else:
                value = to_native(desc.python_type, value)
        values[desc.column_name] = value
    for desc in (
        metadata.partition_key_field,
        metadata.row_key_field,
        metadata.etag_field,
        metadata.timestamp_field,
        *metadata.column_fields,
    ):
        if desc is not None and desc.name not in values:
            values[desc.name] = getattr(item, desc.name, None)
    return values


def _key_value(desc: Optional[FieldDescriptor], item: Any) -> Optional[str]:
    # empty keys stay null; no fallback or generated key is applied
    if desc is None:
        return None
    native = to_native(desc.python_type, getattr(item, desc.name, None))
    if native is None or native == "":
        return None
    return format_value(native)


def _member(desc: Optional[FieldDescriptor], item: Any) -> Any:
    return None if desc is None else getattr(item, desc.name, None)


async def _filter_objects(
    store: TableStore, items: Iterable[Any], join: RelatedJoin
) -> AsyncIterator[Any]:
    metadata: Optional[TypeMetadata] = None
    for item in items:
        if metadata is None or metadata.entity_type is not type(item):
            metadata = require_mappable(type(item))
        if await _retained(store, _object_values(metadata, item), [join]):
            yield item


def with_related(
    store: TableStore, items: Iterable[Any], related_type: type, template: str
) -> AsyncIterator[Any]:
    """Keep domain objects that have at least one related row.

    Tokens may name columns, reserved attributes or members of the
    object's type.
    """
    join = RelatedJoin(related_type, JoinType.RETAIN_WHEN_HAS_ANY, template)
    return _filter_objects(store, items, join)


def without_related(
    store: TableStore, items: Iterable[Any], related_type: type, template: str
) -> AsyncIterator[Any]:
    """Keep domain objects that have no related row."""
    join = RelatedJoin(related_type, JoinType.RETAIN_WHEN_EMPTY, template)
    return _filter_objects(store, items, join)
