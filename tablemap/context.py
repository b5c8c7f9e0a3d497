"""
High-level object API.

TableContext ties mapping, bulk writes, filters and joins together so
callers work with their own dataclasses instead of rows.

Example:
    >>> async with TableContext.from_settings(Settings()) as ctx:
    ...     await ctx.create_table(User)
    ...     await ctx.insert([User(tenant="t1", user_id="u1", email="a@x.io")])
    ...     async for user in ctx.select(User, partition_key="t1"):
    ...         print(user.email)

Invariants:
    - One call writes one type; mixed item types are rejected before
      anything is written
    - Writes report partial failure through BatchResult, never by raising
    - Soft-deleted rows are hidden from reads unless asked for
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Iterable, Optional, Sequence, Type, TypeVar

from .apply.batch import BatchResult, BatchWriter, OperationType
from .config import Settings
from .errors import DefinitionError
from .query.filters import build_columns, build_filter
from .query.joins import RelatedJoin, filter_rows
from .rows.entity import TableEntity
from .rows.transform import to_object, to_rows
from .schema.edm import format_value
from .schema.registry import discover, require_mappable
from .schema.types import IS_DELETED_COLUMN, TypeMetadata
from .store.base import TableStore, create_table_store

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TableContext:
    """Reads and writes mapped dataclasses through a TableStore.

    Attributes:
        store: Row store used for every operation
        settings: Library settings
        writer: Bulk write orchestrator
    """

    def __init__(self, store: TableStore, settings: Optional[Settings] = None) -> None:
        """Initialize the context.

        Args:
            store: Row store to use
            settings: Library settings (defaults loaded from the environment)
        """
        self.store = store
        self.settings = settings or Settings()
        self.writer = BatchWriter(
            store,
            max_batch_size=self.settings.max_batch_size,
            batch_threshold=self.settings.batch_threshold,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> TableContext:
        """Create a context with the store the settings select."""
        settings = settings or Settings()
        return cls(create_table_store(settings), settings)

    async def __aenter__(self) -> TableContext:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying store."""
        await self.store.close()

    # Writes

    async def insert(self, items: Iterable[Any], use_batches: bool = True) -> BatchResult:
        """Insert new rows; existing keys are reported as failures."""
        return await self.execute(OperationType.INSERT, items, use_batches=use_batches)

    async def update(self, items: Iterable[Any], use_batches: bool = True) -> BatchResult:
        """Merge changes into existing rows."""
        return await self.execute(OperationType.UPDATE, items, use_batches=use_batches)

    async def upsert(self, items: Iterable[Any], use_batches: bool = True) -> BatchResult:
        """Insert rows or merge into existing ones."""
        return await self.execute(OperationType.UPSERT, items, use_batches=use_batches)

    async def delete(
        self, items: Iterable[Any], force_delete: bool = False, use_batches: bool = True
    ) -> BatchResult:
        """Delete rows (soft delete unless forced on soft-delete types)."""
        return await self.execute(
            OperationType.DELETE, items, hard_delete=force_delete, use_batches=use_batches
        )

    async def execute(
        self,
        operation: OperationType,
        items: Iterable[Any],
        hard_delete: bool = False,
        use_batches: bool = True,
    ) -> BatchResult:
        """Apply a write operation to a set of domain objects.

        Args:
            operation: Write operation
            items: Objects of a single mapped type
            hard_delete: Physically delete rows of soft-delete types
            use_batches: Allow transactional chunks

        Returns:
            BatchResult with counts and diagnostics

        Raises:
            DefinitionError: If the items mix types or the type is not mappable
            MissingKeyError: If an object has no usable key
            CoercionError: If a value cannot be stored
        """
        items = list(items)
        if not items:
            return BatchResult(0, 0, [])

        metadata = self._metadata_for(items)
        rows = to_rows(metadata, items, minimal=operation is OperationType.DELETE)
        return await self.writer.execute(
            metadata.table_name,
            operation,
            rows,
            use_soft_delete=metadata.use_soft_delete,
            hard_delete=hard_delete,
            use_batches=use_batches,
        )

    async def delete_where(
        self,
        entity_type: type,
        partition_key: Any = None,
        row_key: Any = None,
        filter: Optional[str] = None,
        force_delete: bool = False,
    ) -> BatchResult:
        """Delete every row matching a query.

        With force_delete, rows already soft-deleted are matched too and
        everything matched is physically removed.
        """
        metadata = require_mappable(entity_type)
        predicate = build_filter(
            metadata.use_soft_delete,
            _key_text(partition_key),
            _key_text(row_key),
            filter,
            include_soft_deleted=force_delete,
        )
        rows = [
            row
            async for row in self.store.query(
                metadata.table_name, filter=predicate, select=build_columns(metadata)
            )
        ]
        if not rows:
            return BatchResult(0, 0, [])
        return await self.writer.execute(
            metadata.table_name,
            OperationType.DELETE,
            rows,
            use_soft_delete=metadata.use_soft_delete,
            hard_delete=force_delete,
        )

    # Reads

    async def select_rows(
        self,
        entity_type: type,
        partition_key: Any = None,
        row_key: Any = None,
        filter: Optional[str] = None,
        include_deleted: bool = False,
        top: Optional[int] = None,
        joins: Sequence[RelatedJoin] = (),
    ) -> AsyncIterator[TableEntity]:
        """Lazily read raw rows of a mapped type.

        When joins are given, top caps the rows surviving the joins.
        """
        metadata = discover(entity_type)
        predicate = build_filter(
            metadata.use_soft_delete,
            _key_text(partition_key),
            _key_text(row_key),
            filter,
            include_deleted,
        )
        rows = self.store.query(
            metadata.table_name,
            filter=predicate,
            select=build_columns(metadata),
            top=None if joins else top,
        )
        if joins:
            rows = filter_rows(self.store, rows, joins)

        count = 0
        async for row in rows:
            if top is not None and count >= top:
                return
            count += 1
            yield row

    async def select(
        self,
        entity_type: Type[T],
        partition_key: Any = None,
        row_key: Any = None,
        filter: Optional[str] = None,
        include_deleted: bool = False,
        top: Optional[int] = None,
        joins: Sequence[RelatedJoin] = (),
    ) -> AsyncIterator[T]:
        """Lazily read domain objects.

        Raises:
            DefinitionError: If the type's mapping is invalid
            CoercionError: If a stored value cannot be converted
        """
        metadata = discover(entity_type)
        async for row in self.select_rows(
            entity_type, partition_key, row_key, filter, include_deleted, top, joins
        ):
            yield to_object(metadata, row)

    async def select_one(
        self,
        entity_type: Type[T],
        partition_key: Any = None,
        row_key: Any = None,
        filter: Optional[str] = None,
        include_deleted: bool = False,
    ) -> Optional[T]:
        """First matching object, or None."""
        async for item in self.select(
            entity_type, partition_key, row_key, filter, include_deleted, top=1
        ):
            return item
        return None

    # Table lifecycle

    async def create_table(self, entity_type: type) -> bool:
        """Create the table of a mapped type if it does not exist."""
        return await self.store.create_table(discover(entity_type).table_name)

    async def drop_table(self, entity_type: type) -> bool:
        """Delete the table of a mapped type and all its rows."""
        return await self.store.delete_table(discover(entity_type).table_name)

    async def table_exists(self, entity_type: type) -> bool:
        """Check whether the table of a mapped type exists."""
        return await self.store.table_exists(discover(entity_type).table_name)

    async def list_tables(self) -> list[str]:
        """Names of every table in the store, sorted."""
        return await self.store.list_tables()

    async def clear_table(self, entity_type: type) -> bool:
        """Remove every row of a mapped type's table by dropping and recreating it.

        Nothing else may write to the table until this returns. A missing
        table is left missing.

        Returns:
            True if the table existed and was cleared
        """
        table_name = discover(entity_type).table_name
        if not await self.store.table_exists(table_name):
            return False
        logger.info("Clearing table", extra={"table": table_name})
        await self.store.delete_table(table_name)
        await self.store.create_table(table_name)
        return True

    async def clear_partition(
        self, entity_type: type, partition_key: Any, force_delete: bool = False
    ) -> BatchResult:
        """Delete every row of a partition.

        Soft-delete types get their live rows tagged IsDeleted=true; rows
        already soft-deleted are left alone. With force_delete, or for types
        without soft delete, every row of the partition is removed.

        Raises:
            ValueError: If partition_key is blank
        """
        key = _key_text(partition_key)
        if not key or not key.strip():
            raise ValueError("partition_key is required")
        metadata = discover(entity_type)
        soft = metadata.use_soft_delete and not force_delete
        columns = build_columns(metadata, minimal=True)
        if soft:
            columns.append(IS_DELETED_COLUMN)
        rows = [
            row
            async for row in self.store.query(
                metadata.table_name, filter=build_filter(soft, key), select=columns
            )
        ]
        if not rows:
            return BatchResult(0, 0, [])
        logger.info(
            "Clearing partition",
            extra={
                "table": metadata.table_name,
                "partition_key": key,
                "rows": len(rows),
                "operation": "soft_delete" if soft else "delete",
            },
        )
        return await self.writer.execute(
            metadata.table_name,
            OperationType.DELETE,
            rows,
            use_soft_delete=soft,
            hard_delete=not soft,
        )

    @staticmethod
    def _metadata_for(items: list[Any]) -> TypeMetadata:
        types = {type(item) for item in items}
        if len(types) > 1:
            names = ", ".join(sorted(t.__qualname__ for t in types))
            raise DefinitionError(f"Cannot write items of different types in one call: {names}")
        return require_mappable(types.pop())


def _key_text(value: Any) -> Optional[str]:
    # keys may be given as the field's own type (int, enum, UUID)
    if value is None or isinstance(value, str):
        return value
    return format_value(value)
