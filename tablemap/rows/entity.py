"""
Generic row record for the table store.

A TableEntity is one row as it exists in the store: a composite key
(partition key + row key), the store-assigned timestamp and etag, and an
ordered bag of tagged storage-native properties.

Invariants:
    - Keys never contain \\ # % + / ? or control characters; invalid keys
      are rejected on assignment
    - Property values are EntityProperty instances (or None)
    - Rows are never shared between writes; copy() before reusing one
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from datetime import datetime
from typing import Any, Optional

from ..errors import KeyFormatError
from ..schema.types import (
    ETAG_ANY,
    ETAG_COLUMN,
    PARTITION_KEY_COLUMN,
    ROW_KEY_COLUMN,
    TIMESTAMP_COLUMN,
    EntityProperty,
    ensure_utc,
)

_INVALID_KEY_CHARS = re.compile(r"[\\#%+/?\u0000-\u001F\u007F-\u009F]")


def is_valid_key(value: str) -> bool:
    """Check whether a value can be used as a partition or row key."""
    return isinstance(value, str) and _INVALID_KEY_CHARS.search(value) is None


class TableEntity:
    """One row of a table.

    Attributes:
        partition_key: Partition the row belongs to
        row_key: Identity of the row within its partition
        timestamp: Last-modified time assigned by the store (UTC)
        etag: Concurrency token; "*" matches any stored version
        properties: Column name -> EntityProperty (or None)

    Example:
        >>> row = TableEntity("tenant_1", "user_42")
        >>> row["Email"] = "a@example.com"
        >>> row.get("Email")
        'a@example.com'
    """

    __slots__ = ("_partition_key", "_row_key", "timestamp", "etag", "properties")

    def __init__(
        self,
        partition_key: str = "",
        row_key: str = "",
        timestamp: Optional[datetime] = None,
        etag: str = ETAG_ANY,
        properties: Optional[dict[str, Any]] = None,
    ) -> None:
        self._partition_key = ""
        self._row_key = ""
        self.partition_key = partition_key
        self.row_key = row_key
        self.timestamp = ensure_utc(timestamp) if timestamp is not None else None
        self.etag = etag or ETAG_ANY
        self.properties: dict[str, Optional[EntityProperty]] = {}
        for name, value in (properties or {}).items():
            self[name] = value

    @property
    def partition_key(self) -> str:
        return self._partition_key

    @partition_key.setter
    def partition_key(self, value: str) -> None:
        if not is_valid_key(value):
            raise KeyFormatError(PARTITION_KEY_COLUMN, value)
        self._partition_key = value

    @property
    def row_key(self) -> str:
        return self._row_key

    @row_key.setter
    def row_key(self, value: str) -> None:
        if not is_valid_key(value):
            raise KeyFormatError(ROW_KEY_COLUMN, value)
        self._row_key = value

    def __setitem__(self, name: str, value: Any) -> None:
        if not name or not name.strip():
            raise ValueError("Property name cannot be empty")
        self.properties[name] = None if value is None else EntityProperty.of(value)

    def __getitem__(self, name: str) -> Any:
        prop = self.properties[name]
        return None if prop is None else prop.value

    def __delitem__(self, name: str) -> None:
        del self.properties[name]

    def __contains__(self, name: object) -> bool:
        return name in self.properties

    def __iter__(self) -> Iterator[str]:
        return iter(self.properties)

    def __len__(self) -> int:
        return len(self.properties)

    def get(self, name: str, default: Any = None) -> Any:
        """Get a property's raw value, or default if absent or null."""
        prop = self.properties.get(name)
        return default if prop is None else prop.value

    def property(self, name: str) -> Optional[EntityProperty]:
        """Get a property's tagged value."""
        return self.properties.get(name)

    def keys(self) -> list[str]:
        """Property names in insertion order."""
        return list(self.properties)

    def copy(self) -> TableEntity:
        """Return an independent copy of this row."""
        clone = TableEntity(self.partition_key, self.row_key, self.timestamp, self.etag)
        clone.properties = dict(self.properties)
        return clone

    def to_dict(self) -> dict[str, Any]:
        """Flatten to a plain dictionary, reserved attributes included."""
        result: dict[str, Any] = {
            PARTITION_KEY_COLUMN: self.partition_key,
            ROW_KEY_COLUMN: self.row_key,
            TIMESTAMP_COLUMN: self.timestamp,
            ETAG_COLUMN: self.etag,
        }
        for name, prop in self.properties.items():
            result[name] = None if prop is None else prop.value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TableEntity:
        """Create from a flattened dictionary (see to_dict)."""
        properties = {
            k: v
            for k, v in data.items()
            if k not in (PARTITION_KEY_COLUMN, ROW_KEY_COLUMN, TIMESTAMP_COLUMN, ETAG_COLUMN)
        }
        return cls(
            partition_key=data.get(PARTITION_KEY_COLUMN, ""),
            row_key=data.get(ROW_KEY_COLUMN, ""),
            timestamp=data.get(TIMESTAMP_COLUMN),
            etag=data.get(ETAG_COLUMN) or ETAG_ANY,
            properties=properties,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TableEntity):
            return NotImplemented
        return (
            self.partition_key == other.partition_key
            and self.row_key == other.row_key
            and self.properties == other.properties
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"TableEntity(partition_key={self.partition_key!r}, row_key={self.row_key!r}, "
            f"properties={len(self.properties)})"
        )
