"""
Conversion between domain objects and TableEntity rows.

to_row() flattens a mapped dataclass instance into a row; to_object()
rebuilds an instance from a row read back from the store.

Invariants:
    - Every row produced has a non-empty partition key and row key
    - None column values are never written; an absent column reads back
      as the field's default
    - JSON columns always hold text; anything else read back from a JSON
      column is treated as corrupt and raises
    - Soft-delete types carry IsDeleted=False on every full write

How to change safely:
    - Keep to_row/to_object symmetric; a value written must read back
      equal for every native and JSON column
    - Coercion rules live in schema.edm, not here
"""

from __future__ import annotations

import dataclasses
import uuid
from collections.abc import Iterable, Iterator
from typing import Any, Optional, TypeVar

from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from ..errors import CoercionError, DefinitionError, MissingKeyError
from ..schema.edm import format_value, from_native, to_native
from ..schema.types import (
    ETAG_ANY,
    IS_DELETED_COLUMN,
    EdmType,
    EntityProperty,
    FieldDescriptor,
    TypeMetadata,
)
from .entity import TableEntity

T = TypeVar("T")


def to_row(metadata: TypeMetadata, instance: Any, minimal: bool = False) -> TableEntity:
    """Build a row from a domain object.

    Args:
        metadata: Mapping of the instance's type
        instance: Domain object
        minimal: Only populate keys and etag (used ahead of deletes)

    Returns:
        New TableEntity owned by the caller

    Raises:
        DefinitionError: If the type has no partition key or row key field
        MissingKeyError: If a key is empty and has no fallback
        KeyFormatError: If a key contains disallowed characters
        CoercionError: If a column value cannot be stored
    """
    if not metadata.mappable:
        raise DefinitionError(
            f"Type '{metadata.type_name}' needs both a partition key and a row key "
            "to be written",
            metadata.type_name,
        )

    row = TableEntity(
        partition_key=_partition_key_of(metadata, instance),
        row_key=_row_key_of(metadata, instance),
    )

    if metadata.etag_field is not None:
        row.etag = getattr(instance, metadata.etag_field.name, None) or ETAG_ANY

    if minimal:
        return row

    if metadata.use_soft_delete:
        row[IS_DELETED_COLUMN] = False

    for desc in metadata.column_fields:
        value = getattr(instance, desc.name, None)
        if value is None:
            continue
        if desc.json_encode:
            row.properties[desc.column_name] = EntityProperty(
                EdmType.STRING, _dump_json(metadata, desc, value)
            )
        else:
            native = to_native(desc.python_type, value)
            if native is not None:
                row.properties[desc.column_name] = EntityProperty.of(native)

    return row


def to_object(metadata: TypeMetadata, row: TableEntity) -> Any:
    """Rebuild a domain object from a row.

    Args:
        metadata: Mapping of the target type
        row: Row read from the store

    Returns:
        New instance of metadata.entity_type

    Raises:
        CoercionError: If a stored value cannot be converted to its field type
    """
    values: dict[str, Any] = {}

    if metadata.partition_key_field is not None:
        desc = metadata.partition_key_field
        values[desc.name] = _from_key(desc, row.partition_key)
    if metadata.row_key_field is not None:
        desc = metadata.row_key_field
        values[desc.name] = _from_key(desc, row.row_key)
    if metadata.etag_field is not None:
        values[metadata.etag_field.name] = row.etag
    if metadata.timestamp_field is not None:
        desc = metadata.timestamp_field
        values[desc.name] = from_native(EdmType.DATETIME, desc.python_type, row.timestamp)

    for desc in metadata.column_fields:
        if desc.name in values:
            # key copied into a column; the reserved attribute wins
            continue
        prop = row.property(desc.column_name)
        if prop is None:
            continue
        if desc.json_encode:
            decoded = _load_json(metadata, desc, prop)
            if decoded is not _ABSENT:
                values[desc.name] = decoded
        else:
            values[desc.name] = from_native(prop.edm_type, desc.python_type, prop.value)

    return _construct(metadata.entity_type, values)


def to_rows(metadata: TypeMetadata, instances: Iterable[Any], minimal: bool = False) -> list[TableEntity]:
    """Build rows for a sequence of instances (fails on the first bad one)."""
    return [to_row(metadata, instance, minimal) for instance in instances]


def to_objects(metadata: TypeMetadata, rows: Iterable[TableEntity]) -> Iterator[Any]:
    """Lazily rebuild domain objects from rows."""
    for row in rows:
        yield to_object(metadata, row)


_ABSENT = object()


def _partition_key_of(metadata: TypeMetadata, instance: Any) -> str:
    desc = metadata.partition_key_field
    text = _key_text(desc, instance)
    if text:
        return text
    if desc.default_value:
        return desc.default_value
    raise MissingKeyError(
        f"Partition key '{desc.name}' of '{metadata.type_name}' has no value",
        metadata.type_name,
        desc.name,
    )


def _row_key_of(metadata: TypeMetadata, instance: Any) -> str:
    desc = metadata.row_key_field
    text = _key_text(desc, instance)
    if text:
        return text
    if desc.autogenerate:
        return str(uuid.uuid4())
    raise MissingKeyError(
        f"Row key '{desc.name}' of '{metadata.type_name}' has no value",
        metadata.type_name,
        desc.name,
    )


def _key_text(desc: FieldDescriptor, instance: Any) -> Optional[str]:
    native = to_native(desc.python_type, getattr(instance, desc.name, None))
    if native is None:
        return None
    return format_value(native)


def _from_key(desc: FieldDescriptor, text: str) -> Any:
    if not text and desc.nullable:
        return None
    return from_native(EdmType.STRING, desc.python_type, text)


def _dump_json(metadata: TypeMetadata, desc: FieldDescriptor, value: Any) -> str:
    try:
        return desc.adapter.dump_json(value).decode("utf-8")
    except PydanticSerializationError as e:
        raise CoercionError(
            f"Cannot JSON encode field '{desc.name}' of '{metadata.type_name}': {e}",
            source_type=type(value),
            target_type=EdmType.STRING,
        ) from e


def _load_json(metadata: TypeMetadata, desc: FieldDescriptor, prop: EntityProperty) -> Any:
    if prop.edm_type is not EdmType.STRING:
        raise CoercionError(
            f"Column '{desc.column_name}' of '{metadata.type_name}' holds "
            f"{prop.edm_type.value}, expected JSON text",
            source_type=prop.edm_type,
            target_type=desc.python_type,
        )
    if not prop.value.strip():
        return _ABSENT
    try:
        return desc.adapter.validate_json(prop.value)
    except ValidationError as e:
        raise CoercionError(
            f"Column '{desc.column_name}' of '{metadata.type_name}' holds invalid JSON: {e}",
            source_type=EdmType.STRING,
            target_type=desc.python_type,
        ) from e


def _construct(cls: type[T], values: dict[str, Any]) -> T:
    init_args: dict[str, Any] = {}
    late: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        if f.name in values:
            (init_args if f.init else late)[f.name] = values[f.name]
        elif f.init and f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
            init_args[f.name] = None

    instance = cls(**init_args)
    for name, value in late.items():
        object.__setattr__(instance, name, value)
    return instance
