"""
Schema module for tablemap - declaring and discovering table mappings.

This module handles:
- Mapping markers placed on dataclasses (table, partition_key, row_key, ...)
- The closed set of storage-native value kinds
- Value coercion between domain and storage-native types
- The process-wide metadata registry

Invariants:
    - Metadata is built once per type and cached for the process lifetime
    - Invalid mappings fail at discovery, before any row is written
"""

from .edm import format_value, from_native, is_column_compatible, to_native, unwrap_optional
from .registry import (
    MetadataRegistry,
    discover,
    get_registry,
    require_mappable,
    reset_registry,
    try_discover,
)
from .types import (
    ETAG_ANY,
    IS_DELETED_COLUMN,
    RESERVED_COLUMNS,
    EdmType,
    EntityProperty,
    FieldDescriptor,
    FieldRole,
    TypeMetadata,
    column,
    edm_type_for,
    etag,
    partition_key,
    row_key,
    table,
    timestamp,
)

__all__ = [
    # Declarations
    "table",
    "partition_key",
    "row_key",
    "etag",
    "timestamp",
    "column",
    # Types
    "EdmType",
    "EntityProperty",
    "FieldRole",
    "FieldDescriptor",
    "TypeMetadata",
    "ETAG_ANY",
    "IS_DELETED_COLUMN",
    "RESERVED_COLUMNS",
    "edm_type_for",
    # Coercion
    "to_native",
    "from_native",
    "format_value",
    "is_column_compatible",
    "unwrap_optional",
    # Registry
    "MetadataRegistry",
    "discover",
    "try_discover",
    "require_mappable",
    "get_registry",
    "reset_registry",
]
