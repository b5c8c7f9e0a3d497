"""
tablemap - object mapping and batched writes for partitioned row stores.

This package maps plain dataclasses onto a key/value table store where
every row is addressed by a partition key and a row key:
- Declarative mapping markers (table, partition_key, row_key, column, ...)
- Value coercion between domain types and storage-native values
- Bulk writes in per-partition transactions with partial-failure reports
- Filter building and emulated joins against related tables

Example:
    >>> from dataclasses import dataclass
    >>> from tablemap import TableContext, table, partition_key, row_key, column
    >>>
    >>> @table("Users")
    ... @dataclass
    ... class User:
    ...     tenant: str = partition_key()
    ...     user_id: str = row_key(autogenerate=True)
    ...     email: str = column("Email")
    >>>
    >>> async with TableContext.from_settings() as ctx:
    ...     await ctx.create_table(User)
    ...     result = await ctx.insert([User(tenant="t1", email="a@example.com")])
    ...     result.passed
    1

Invariants:
    - Mapping metadata is discovered once per type and never changes
    - Keys never contain disallowed characters
    - Bulk write failures are reported, not raised

Version: 1.0.0
"""

__version__ = "1.0.0"

from .apply import BatchResult, BatchWriter, OperationType
from .config import Settings, StoreBackend, setup_logging
from .context import TableContext
from .errors import (
    CoercionError,
    DefinitionError,
    FilterSyntaxError,
    KeyFormatError,
    MissingKeyError,
    StoreError,
    TableMapError,
    TableNotFoundError,
    TransactionFailedError,
)
from .query import (
    JoinType,
    RelatedJoin,
    build_columns,
    build_filter,
    compile_filter,
    filter_related,
    filter_rows,
    substitute,
    with_related,
    without_related,
)
from .rows import TableEntity, is_valid_key, to_object, to_objects, to_row, to_rows
from .schema import (
    EdmType,
    EntityProperty,
    TypeMetadata,
    column,
    discover,
    etag,
    partition_key,
    row_key,
    table,
    timestamp,
    try_discover,
)
from .store import (
    InMemoryTableStore,
    SQLiteTableStore,
    TableStore,
    TransactionAction,
    TransactionActionType,
    create_table_store,
)

__all__ = [
    # Version
    "__version__",
    # Mapping declarations
    "table",
    "partition_key",
    "row_key",
    "etag",
    "timestamp",
    "column",
    "EdmType",
    "EntityProperty",
    "TypeMetadata",
    "discover",
    "try_discover",
    # Rows
    "TableEntity",
    "is_valid_key",
    "to_row",
    "to_rows",
    "to_object",
    "to_objects",
    # Queries and joins
    "build_filter",
    "build_columns",
    "compile_filter",
    "JoinType",
    "RelatedJoin",
    "substitute",
    "filter_rows",
    "filter_related",
    "with_related",
    "without_related",
    # Stores
    "TableStore",
    "TransactionAction",
    "TransactionActionType",
    "InMemoryTableStore",
    "SQLiteTableStore",
    "create_table_store",
    # Writes
    "OperationType",
    "BatchResult",
    "BatchWriter",
    "TableContext",
    # Configuration
    "Settings",
    "StoreBackend",
    "setup_logging",
    # Errors
    "TableMapError",
    "DefinitionError",
    "MissingKeyError",
    "CoercionError",
    "KeyFormatError",
    "StoreError",
    "TransactionFailedError",
    "TableNotFoundError",
    "FilterSyntaxError",
]
