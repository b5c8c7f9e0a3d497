"""
In-memory row store implementation for testing.

This module provides a simple in-memory TableStore backend for:
- Unit tests
- Local development without a table service

Invariants:
    - All data is lost on process exit
    - Same failure statuses and transaction semantics as every backend
    - Rows are copied on the way in and on the way out

How to change safely:
    - Keep interface compatible with the TableStore protocol
    - Keep failure statuses identical to SQLiteTableStore
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Dict, Optional, Sequence, Tuple

from ..errors import TableNotFoundError
from ..query.odata import compile_filter
from ..rows.entity import TableEntity
from .base import (
    TransactionAction,
    apply_action,
    check_action,
    project,
    utc_now,
    validate_transaction,
)

logger = logging.getLogger(__name__)

_Key = Tuple[str, str]


class InMemoryTableStore:
    """In-memory implementation of TableStore for testing.

    Attributes:
        submitted: Number of submit_transaction() calls received
            (accepted or rejected), useful for asserting batching behavior

    Thread safety:
        Uses an asyncio lock around every write. Safe to use from
        multiple coroutines.

    Example:
        >>> store = InMemoryTableStore()
        >>> await store.create_table("Users")
        >>> await store.submit_transaction("Users", actions)
    """

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._tables: Dict[str, Dict[_Key, TableEntity]] = {}
        self._lock = asyncio.Lock()
        self.submitted = 0

    def _table(self, table_name: str) -> Dict[_Key, TableEntity]:
        table = self._tables.get(table_name)
        if table is None:
            raise TableNotFoundError(table_name)
        return table

    async def submit_transaction(
        self, table_name: str, actions: Sequence[TransactionAction]
    ) -> None:
        """Apply a batch of same-partition actions atomically."""
        async with self._lock:
            self.submitted += 1
            table = self._table(table_name)
            validate_transaction(actions)
            self._apply(table, actions, transactional=True)

        logger.debug(
            "Applied transaction",
            extra={
                "table": table_name,
                "partition_key": actions[0].entity.partition_key,
                "actions": len(actions),
            },
        )

    async def submit(self, table_name: str, action: TransactionAction) -> None:
        """Apply a single action."""
        async with self._lock:
            table = self._table(table_name)
            self._apply(table, [action], transactional=False)

    def _apply(
        self,
        table: Dict[_Key, TableEntity],
        actions: Sequence[TransactionAction],
        transactional: bool,
    ) -> None:
        # Stage every change first so a rejected action leaves the table untouched
        staged: Dict[_Key, Optional[TableEntity]] = {}
        now = utc_now()
        for index, action in enumerate(actions):
            key = (action.entity.partition_key, action.entity.row_key)
            existing = staged[key] if key in staged else table.get(key)
            check_action(action, existing, index if transactional else None)
            staged[key] = apply_action(action, existing, now)

        for key, row in staged.items():
            if row is None:
                table.pop(key, None)
            else:
                table[key] = row

    async def query(
        self,
        table_name: str,
        filter: Optional[str] = None,
        select: Optional[Sequence[str]] = None,
        top: Optional[int] = None,
    ) -> AsyncIterator[TableEntity]:
        """Lazily read rows matching a predicate, in key order."""
        predicate = compile_filter(filter)
        async with self._lock:
            rows = [self._table(table_name)[key] for key in sorted(self._table(table_name))]

        yielded = 0
        for row in rows:
            if top is not None and yielded >= top:
                return
            if predicate(row):
                yielded += 1
                yield project(row, select)

    async def create_table(self, table_name: str) -> bool:
        """Create a table if it does not exist."""
        async with self._lock:
            if table_name in self._tables:
                return False
            self._tables[table_name] = {}
        logger.info("Created table", extra={"table": table_name})
        return True

    async def delete_table(self, table_name: str) -> bool:
        """Delete a table and every row in it."""
        async with self._lock:
            existed = self._tables.pop(table_name, None) is not None
        if existed:
            logger.info("Deleted table", extra={"table": table_name})
        return existed

    async def table_exists(self, table_name: str) -> bool:
        """Check whether a table exists."""
        return table_name in self._tables

    async def list_tables(self) -> list[str]:
        """Names of every table, sorted."""
        return sorted(self._tables)

    async def close(self) -> None:
        """Clear all data."""
        async with self._lock:
            self._tables.clear()
        logger.debug("InMemoryTableStore closed")

    def row_count(self, table_name: str) -> int:
        """Number of rows stored in a table (for testing)."""
        return len(self._table(table_name))
