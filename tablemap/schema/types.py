"""
Core type definitions for the tablemap schema system.

This module defines the foundational types of the mapping layer:
- EdmType / EntityProperty: the closed set of storage-native values
- table / partition_key / row_key / etag / timestamp / column: declarative
  mapping markers placed on dataclasses
- FieldDescriptor: one mapped member of a domain type
- TypeMetadata: the immutable mapping record built once per domain type

Invariants:
    - The storage-native type set is closed; every stored value is tagged
    - Stored datetimes are always UTC
    - Column names are unique within a type and never reuse reserved names
    - TypeMetadata is never mutated after discovery

How to change safely:
    - New native types require matching support in every row store
    - Never rename reserved column names; stored rows depend on them

Example:
    >>> @table("Users")
    ... @dataclass
    ... class User:
    ...     tenant: str = partition_key()
    ...     user_id: str = row_key(autogenerate=True)
    ...     email: str = column("Email")
    ...     tags: list[str] = column(json=True, default_factory=list)
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import MISSING, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from ..errors import CoercionError, DefinitionError

PARTITION_KEY_COLUMN = "PartitionKey"
ROW_KEY_COLUMN = "RowKey"
TIMESTAMP_COLUMN = "Timestamp"
ETAG_COLUMN = "ETag"
IS_DELETED_COLUMN = "IsDeleted"

RESERVED_COLUMNS = frozenset({PARTITION_KEY_COLUMN, ROW_KEY_COLUMN, TIMESTAMP_COLUMN, ETAG_COLUMN})

# Wildcard etag: skip optimistic concurrency checks
ETAG_ANY = "*"

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
UINT64_MAX = 2**64 - 1

_METADATA_KEY = "tablemap"
_TABLE_ATTR = "__tablemap_table__"


class EdmType(Enum):
    """Storage-native value kinds understood by the row store."""

    STRING = "Edm.String"
    BOOLEAN = "Edm.Boolean"
    INT64 = "Edm.Int64"
    UINT64 = "Edm.UInt64"
    DOUBLE = "Edm.Double"
    BINARY = "Edm.Binary"
    GUID = "Edm.Guid"
    DATETIME = "Edm.DateTime"


_NATIVE_TYPES: dict[type, EdmType] = {
    str: EdmType.STRING,
    bool: EdmType.BOOLEAN,
    int: EdmType.INT64,
    float: EdmType.DOUBLE,
    bytes: EdmType.BINARY,
    bytearray: EdmType.BINARY,
    uuid.UUID: EdmType.GUID,
    datetime: EdmType.DATETIME,
}

PYTHON_TYPES: dict[EdmType, type] = {
    EdmType.STRING: str,
    EdmType.BOOLEAN: bool,
    EdmType.INT64: int,
    EdmType.UINT64: int,
    EdmType.DOUBLE: float,
    EdmType.BINARY: bytes,
    EdmType.GUID: uuid.UUID,
    EdmType.DATETIME: datetime,
}


def edm_type_for(python_type: Any) -> EdmType | None:
    """Get the storage-native kind for a Python type, or None if not native."""
    if not isinstance(python_type, type):
        return None
    return _NATIVE_TYPES.get(python_type)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to UTC.

    Naive values are taken to already be UTC; aware values are converted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class EntityProperty:
    """A tagged storage-native value.

    Attributes:
        edm_type: Storage kind of the value
        value: The Python value (int, str, bool, float, bytes, UUID or UTC datetime)
    """

    edm_type: EdmType
    value: Any

    @classmethod
    def of(cls, value: Any) -> EntityProperty:
        """Infer the storage kind of a Python value.

        Raises:
            CoercionError: If the value is not storage-native
        """
        if isinstance(value, EntityProperty):
            return value
        if isinstance(value, bool):
            return cls(EdmType.BOOLEAN, value)
        if isinstance(value, int) and not isinstance(value, Enum):
            if INT64_MIN <= value <= INT64_MAX:
                return cls(EdmType.INT64, int(value))
            if 0 <= value <= UINT64_MAX:
                return cls(EdmType.UINT64, int(value))
            raise CoercionError(
                f"Integer {value} does not fit in a 64-bit column",
                source_type=int,
                target_type=EdmType.INT64,
            )
        if isinstance(value, float):
            return cls(EdmType.DOUBLE, value)
        if isinstance(value, str) and not isinstance(value, Enum):
            return cls(EdmType.STRING, str(value))
        if isinstance(value, (bytes, bytearray)):
            return cls(EdmType.BINARY, bytes(value))
        if isinstance(value, uuid.UUID):
            return cls(EdmType.GUID, value)
        if isinstance(value, datetime):
            return cls(EdmType.DATETIME, ensure_utc(value))
        raise CoercionError(
            f"'{type(value).__name__}' is not a storage-native type",
            source_type=type(value),
        )


class FieldRole(Enum):
    """Role a member plays in the row layout."""

    PARTITION_KEY = "partition_key"
    ROW_KEY = "row_key"
    ETAG = "etag"
    TIMESTAMP = "timestamp"
    COLUMN = "column"


@dataclass(frozen=True)
class TableSpec:
    """Table-level mapping declared with @table."""

    name: str
    soft_delete: bool = True


@dataclass(frozen=True)
class FieldSpec:
    """Mapping declared on a single dataclass field.

    Attributes:
        role: Role of the field
        column_name: Explicit column name (None = member name for columns,
            not stored as a column for key fields)
        json_encode: Store the value as JSON text
        default_value: Partition key fallback when the instance has none
        autogenerate: Assign a fresh UUID when the row key is empty
    """

    role: FieldRole
    column_name: Optional[str] = None
    json_encode: bool = False
    default_value: Optional[str] = None
    autogenerate: bool = False


def table(name: str, *, soft_delete: bool = True) -> Callable[[type], type]:
    """Declare the table a dataclass is stored in.

    Args:
        name: Table name
        soft_delete: Tag rows with IsDeleted instead of removing them

    Raises:
        DefinitionError: If the name is blank
    """
    if not name or not name.strip():
        raise DefinitionError("Table name cannot be empty")

    def decorate(cls: type) -> type:
        setattr(cls, _TABLE_ATTR, TableSpec(name=name, soft_delete=soft_delete))
        return cls

    return decorate


def get_table_spec(cls: type) -> TableSpec | None:
    """Get the @table declaration of a class (inherited declarations count)."""
    spec = getattr(cls, _TABLE_ATTR, None)
    return spec if isinstance(spec, TableSpec) else None


def get_field_spec(f: dataclasses.Field) -> FieldSpec | None:
    """Get the mapping marker of a dataclass field."""
    spec = f.metadata.get(_METADATA_KEY)
    return spec if isinstance(spec, FieldSpec) else None


def _mapped_field(spec: FieldSpec, default: Any, default_factory: Any, **kwargs: Any) -> Any:
    metadata = {_METADATA_KEY: spec}
    if default_factory is not MISSING:
        return dataclasses.field(default_factory=default_factory, metadata=metadata, **kwargs)
    return dataclasses.field(default=default, metadata=metadata, **kwargs)


def partition_key(
    *,
    default_value: Optional[str] = None,
    column: Optional[str] = None,
    default: Any = None,
    **kwargs: Any,
) -> Any:
    """Mark a field as the partition key.

    Args:
        default_value: Key used when the instance value is empty
        column: Also store the value in this regular column
        default: Dataclass default for the field
    """
    spec = FieldSpec(FieldRole.PARTITION_KEY, column_name=column, default_value=default_value)
    return _mapped_field(spec, default, MISSING, **kwargs)


def row_key(
    *,
    autogenerate: bool = False,
    column: Optional[str] = None,
    default: Any = None,
    **kwargs: Any,
) -> Any:
    """Mark a field as the row key.

    Args:
        autogenerate: Assign a new UUID when the instance value is empty
        column: Also store the value in this regular column
        default: Dataclass default for the field
    """
    spec = FieldSpec(FieldRole.ROW_KEY, column_name=column, autogenerate=autogenerate)
    return _mapped_field(spec, default, MISSING, **kwargs)


def etag(*, default: Any = None, **kwargs: Any) -> Any:
    """Mark a field as the concurrency token."""
    return _mapped_field(FieldSpec(FieldRole.ETAG), default, MISSING, **kwargs)


def timestamp(*, default: Any = None, **kwargs: Any) -> Any:
    """Mark a field as receiving the store-assigned last-modified time."""
    return _mapped_field(FieldSpec(FieldRole.TIMESTAMP), default, MISSING, **kwargs)


def column(
    name: Optional[str] = None,
    *,
    json: bool = False,
    default: Any = None,
    default_factory: Any = MISSING,
    **kwargs: Any,
) -> Any:
    """Map a field to a column.

    Args:
        name: Column name (defaults to the member name)
        json: Store the value as JSON text
        default: Dataclass default for the field
        default_factory: Dataclass default factory for the field
    """
    spec = FieldSpec(FieldRole.COLUMN, column_name=name, json_encode=json)
    return _mapped_field(spec, default, default_factory, **kwargs)


@dataclass(frozen=True)
class FieldDescriptor:
    """A mapped member of a domain type.

    Attributes:
        name: Member name on the domain type
        python_type: Declared type with Optional[...] unwrapped
        nullable: Whether the declaration was Optional
        is_native: Whether python_type is storage-native
        role: Role of the member
        column_name: Mapped column, or None for key-only members
        json_encode: Whether the column holds JSON text
        default_value: Partition key fallback
        autogenerate: Row key UUID generation
        adapter: pydantic TypeAdapter for JSON columns
    """

    name: str
    python_type: Any
    nullable: bool
    is_native: bool
    role: FieldRole
    column_name: Optional[str] = None
    json_encode: bool = False
    default_value: Optional[str] = None
    autogenerate: bool = False
    adapter: Any = dataclasses.field(default=None, compare=False, repr=False)

    @property
    def edm_type(self) -> EdmType | None:
        """Storage-native kind of the declared type."""
        return edm_type_for(self.python_type)


@dataclass(frozen=True)
class TypeMetadata:
    """Mapping record for one domain type.

    Built once by discover() and cached for the life of the process.

    Attributes:
        entity_type: The domain class
        table_name: Target table
        use_soft_delete: Deletes tag IsDeleted instead of removing rows
        partition_key_field: Partition key member, if any
        row_key_field: Row key member, if any
        etag_field: Concurrency token member, if any
        timestamp_field: Last-modified member, if any
        column_fields: Column-mapped members in declaration order
    """

    entity_type: type
    table_name: str
    use_soft_delete: bool
    partition_key_field: Optional[FieldDescriptor]
    row_key_field: Optional[FieldDescriptor]
    etag_field: Optional[FieldDescriptor]
    timestamp_field: Optional[FieldDescriptor]
    column_fields: tuple[FieldDescriptor, ...] = ()

    @property
    def type_name(self) -> str:
        """Qualified name of the domain type."""
        return f"{self.entity_type.__module__}.{self.entity_type.__qualname__}"

    @property
    def mappable(self) -> bool:
        """Whether rows can be built (both keys are declared)."""
        return self.partition_key_field is not None and self.row_key_field is not None

    def column_names(self) -> list[str]:
        """Names of the mapped columns."""
        return [f.column_name for f in self.column_fields if f.column_name]

    def get_column(self, name: str) -> FieldDescriptor | None:
        """Get a column-mapped member by column name."""
        for f in self.column_fields:
            if f.column_name == name:
                return f
        return None

    def __hash__(self) -> int:
        return hash(self.entity_type)
