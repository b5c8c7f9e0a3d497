"""
Type metadata discovery and the process-wide metadata cache.

discover() inspects a @table dataclass once, validates its mapping and
returns an immutable TypeMetadata. Results are cached by type identity for
the life of the process.

Thread safety:
    Reads are lock-free once a type is cached. The lock guards only the
    check-and-insert step, so concurrent first callers all observe the
    same metadata instance.

Example:
    >>> meta = discover(User)
    >>> meta.table_name
    'Users'
    >>> discover(User) is meta
    True
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import typing
from collections.abc import Iterator
from datetime import date, datetime

from pydantic import PydanticUserError, TypeAdapter

from ..errors import DefinitionError
from .edm import is_column_compatible, unwrap_optional
from .types import (
    IS_DELETED_COLUMN,
    RESERVED_COLUMNS,
    FieldDescriptor,
    FieldRole,
    FieldSpec,
    TypeMetadata,
    edm_type_for,
    get_field_spec,
    get_table_spec,
)

logger = logging.getLogger(__name__)

# Global registry
_global_registry: MetadataRegistry | None = None
_registry_lock = threading.Lock()

_SINGLE_ROLES = {
    FieldRole.PARTITION_KEY: "partition key",
    FieldRole.ROW_KEY: "row key",
    FieldRole.ETAG: "etag",
    FieldRole.TIMESTAMP: "timestamp",
}


class MetadataRegistry:
    """Cache of discovered TypeMetadata keyed by type identity.

    Entries are never evicted; types are assumed static for the life of
    the process.
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._cache: dict[type, TypeMetadata] = {}
        self._lock = threading.Lock()

    def get(self, cls: type) -> TypeMetadata | None:
        """Get cached metadata without discovering."""
        return self._cache.get(cls)

    def discover(self, cls: type) -> TypeMetadata:
        """Get metadata for a type, building and caching it on first use.

        Raises:
            DefinitionError: If the type's mapping is invalid
        """
        meta = self._cache.get(cls)
        if meta is not None:
            return meta

        built = build_metadata(cls)
        with self._lock:
            meta = self._cache.get(cls)
            if meta is None:
                self._cache[cls] = built
                meta = built
                logger.debug(
                    "Discovered table mapping",
                    extra={"type": meta.type_name, "table": meta.table_name},
                )
        return meta

    def clear(self) -> None:
        """Drop every cached entry (for testing only)."""
        with self._lock:
            self._cache.clear()

    def __contains__(self, cls: object) -> bool:
        return cls in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def __iter__(self) -> Iterator[TypeMetadata]:
        return iter(list(self._cache.values()))


def build_metadata(cls: type) -> TypeMetadata:
    """Inspect a type and build its metadata (uncached).

    Raises:
        DefinitionError: If the type's mapping is invalid
    """
    type_name = getattr(cls, "__qualname__", repr(cls))
    table_spec = get_table_spec(cls) if isinstance(cls, type) else None
    if table_spec is None:
        raise DefinitionError(f"Type '{type_name}' is not declared with @table", type_name)
    if not dataclasses.is_dataclass(cls):
        raise DefinitionError(f"Type '{type_name}' must be a dataclass", type_name)

    try:
        hints = typing.get_type_hints(cls)
    except (NameError, TypeError) as e:
        raise DefinitionError(
            f"Cannot resolve field types of '{type_name}': {e}", type_name
        ) from e

    roles: dict[FieldRole, FieldDescriptor] = {}
    columns: list[FieldDescriptor] = []

    for f in dataclasses.fields(cls):
        spec = get_field_spec(f)
        if spec is None:
            continue

        declared = hints.get(f.name, typing.Any)
        if spec.role in _SINGLE_ROLES:
            if spec.role in roles:
                raise DefinitionError(
                    f"'{type_name}' has multiple {_SINGLE_ROLES[spec.role]} fields defined: "
                    f"'{roles[spec.role].name}' and '{f.name}'",
                    type_name,
                )
            roles[spec.role] = _describe(type_name, f.name, declared, spec)
            _check_role_type(type_name, roles[spec.role])
            if spec.column_name:
                copy = FieldSpec(FieldRole.COLUMN, column_name=spec.column_name)
                columns.append(_describe(type_name, f.name, declared, copy))
        else:
            columns.append(_describe(type_name, f.name, declared, spec))

    _check_columns(type_name, table_spec.soft_delete, columns)

    if not columns and FieldRole.PARTITION_KEY not in roles and FieldRole.ROW_KEY not in roles:
        raise DefinitionError(
            f"Type '{type_name}' has no properties or fields mapped to a table", type_name
        )

    return TypeMetadata(
        entity_type=cls,
        table_name=table_spec.name,
        use_soft_delete=table_spec.soft_delete,
        partition_key_field=roles.get(FieldRole.PARTITION_KEY),
        row_key_field=roles.get(FieldRole.ROW_KEY),
        etag_field=roles.get(FieldRole.ETAG),
        timestamp_field=roles.get(FieldRole.TIMESTAMP),
        column_fields=tuple(columns),
    )


def _describe(type_name: str, name: str, declared: typing.Any, spec: FieldSpec) -> FieldDescriptor:
    inner, nullable = unwrap_optional(declared)
    column_name = spec.column_name
    if spec.role is FieldRole.COLUMN and not column_name:
        column_name = name

    adapter = None
    if spec.json_encode:
        try:
            adapter = TypeAdapter(declared)
        except (PydanticUserError, TypeError) as e:
            raise DefinitionError(
                f"Field '{name}' of '{type_name}' cannot be JSON encoded: {e}", type_name
            ) from e
    elif spec.role is FieldRole.COLUMN and not is_column_compatible(declared):
        raise DefinitionError(
            f"Field '{name}' of '{type_name}' has type '{declared}' which needs json=True",
            type_name,
        )

    return FieldDescriptor(
        name=name,
        python_type=inner,
        nullable=nullable,
        is_native=edm_type_for(inner) is not None,
        role=spec.role,
        column_name=column_name if spec.role is FieldRole.COLUMN else None,
        json_encode=spec.json_encode,
        default_value=spec.default_value,
        autogenerate=spec.autogenerate,
        adapter=adapter,
    )


def _check_role_type(type_name: str, desc: FieldDescriptor) -> None:
    if desc.role in (FieldRole.PARTITION_KEY, FieldRole.ROW_KEY):
        if not is_column_compatible(desc.python_type):
            raise DefinitionError(
                f"Key field '{desc.name}' of '{type_name}' has no text form", type_name
            )
        if desc.python_type is datetime:
            # ISO text of an aware datetime carries "+", which keys may not hold
            raise DefinitionError(
                f"Key field '{desc.name}' of '{type_name}' cannot be a datetime", type_name
            )
    elif desc.role is FieldRole.ETAG and desc.python_type is not str:
        raise DefinitionError(f"ETag field '{desc.name}' of '{type_name}' must be str", type_name)
    elif desc.role is FieldRole.TIMESTAMP and desc.python_type not in (datetime, date, str):
        raise DefinitionError(
            f"Timestamp field '{desc.name}' of '{type_name}' must be datetime, date or str",
            type_name,
        )


def _check_columns(type_name: str, soft_delete: bool, columns: list[FieldDescriptor]) -> None:
    seen: dict[str, str] = {}
    for desc in columns:
        name = desc.column_name or desc.name
        if name in RESERVED_COLUMNS:
            raise DefinitionError(
                f"Field '{desc.name}' of '{type_name}' uses reserved column name '{name}'",
                type_name,
            )
        if soft_delete and name == IS_DELETED_COLUMN:
            raise DefinitionError(
                f"Field '{desc.name}' of '{type_name}' uses column '{IS_DELETED_COLUMN}' "
                "which is reserved on soft-delete tables",
                type_name,
            )
        if name in seen:
            raise DefinitionError(
                f"Column '{name}' of '{type_name}' is mapped by both '{seen[name]}' and '{desc.name}'",
                type_name,
            )
        seen[name] = desc.name


def get_registry() -> MetadataRegistry:
    """Get the global metadata registry."""
    global _global_registry
    if _global_registry is None:
        with _registry_lock:
            if _global_registry is None:
                _global_registry = MetadataRegistry()
    return _global_registry


def discover(cls: type) -> TypeMetadata:
    """Get the (cached) metadata of a mapped type.

    Raises:
        DefinitionError: If the type's mapping is invalid
    """
    return get_registry().discover(cls)


def try_discover(cls: type) -> TypeMetadata | None:
    """Get metadata for a type, or None if it cannot be mapped to rows."""
    try:
        meta = discover(cls)
    except DefinitionError:
        return None
    return meta if meta.mappable else None


def require_mappable(cls: type) -> TypeMetadata:
    """Get metadata for a type that must have both keys.

    Raises:
        DefinitionError: If the type is invalid or lacks a key field
    """
    meta = discover(cls)
    if not meta.mappable:
        missing = "partition key" if meta.partition_key_field is None else "row key"
        raise DefinitionError(f"Type '{meta.type_name}' has no {missing} field", meta.type_name)
    return meta


def reset_registry() -> None:
    """Reset the global registry (for testing only)."""
    global _global_registry
    with _registry_lock:
        _global_registry = None
