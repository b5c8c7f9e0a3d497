"""
Base protocol and types for the row-store boundary.

This module defines the TableStore protocol every backend implements,
along with the transaction action types and helpers shared by the
in-process implementations.

Invariants:
    - A transaction touches at most MAX_TRANSACTION_ACTIONS rows, all in
      one partition, and is applied atomically or not at all
    - A rejected transaction raises TransactionFailedError naming the
      first offending action's index when one can be identified
    - Every successful write assigns a fresh etag and a UTC timestamp
    - Rows handed to or returned from a store are never shared with it

How to change safely:
    - Protocol changes require updating every implementation
    - Keep failure statuses aligned across implementations; the batch
      writer's recovery rules depend on them
"""

from __future__ import annotations

import logging
import threading
from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import (
    TYPE_CHECKING,
    AsyncIterator,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from ..errors import TransactionFailedError
from ..rows.entity import TableEntity
from ..schema.types import ETAG_ANY

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

# Hard per-transaction row limit of the row store
MAX_TRANSACTION_ACTIONS = 100

_last_write_time: Optional[datetime] = None
_clock_lock = threading.Lock()


class TransactionActionType(Enum):
    """Per-row write kinds understood by the row store."""

    ADD = "add"
    UPDATE_MERGE = "update_merge"
    UPDATE_REPLACE = "update_replace"
    UPSERT_MERGE = "upsert_merge"
    UPSERT_REPLACE = "upsert_replace"
    DELETE = "delete"

    @property
    def is_update(self) -> bool:
        return self in (TransactionActionType.UPDATE_MERGE, TransactionActionType.UPDATE_REPLACE)

    @property
    def is_merge(self) -> bool:
        return self in (TransactionActionType.UPDATE_MERGE, TransactionActionType.UPSERT_MERGE)


@dataclass(frozen=True)
class TransactionAction:
    """One row write inside a transaction.

    Attributes:
        action_type: Kind of write
        entity: Row to write (only keys and etag are used for DELETE)
    """

    action_type: TransactionActionType
    entity: TableEntity


@runtime_checkable
class TableStore(Protocol):
    """Protocol for row-store backends.

    Transaction contract:
        - submit_transaction() applies all actions or none
        - Actions must share one partition key; at most 100 per call
        - On rejection, TransactionFailedError.failed_index names the
          first offending action when the backend can tell

    Failure statuses:
        - 400: malformed request (mixed partitions, too many actions,
          duplicate keys in one transaction)
        - 404: update or delete of a missing row; unknown table
        - 409: add of an existing row
        - 412: etag mismatch

    Example:
        >>> store = InMemoryTableStore()
        >>> await store.create_table("Users")
        >>> await store.submit("Users", TransactionAction(TransactionActionType.ADD, row))
        >>> async for row in store.query("Users", "PartitionKey eq 't1'"):
        ...     print(row.row_key)
    """

    @abstractmethod
    async def submit_transaction(
        self, table_name: str, actions: Sequence[TransactionAction]
    ) -> None:
        """Apply a batch of same-partition actions atomically.

        Raises:
            TransactionFailedError: If any action is rejected
            TableNotFoundError: If the table does not exist
        """
        ...

    @abstractmethod
    async def submit(self, table_name: str, action: TransactionAction) -> None:
        """Apply a single action.

        Raises:
            TransactionFailedError: If the action is rejected
            TableNotFoundError: If the table does not exist
        """
        ...

    @abstractmethod
    def query(
        self,
        table_name: str,
        filter: Optional[str] = None,
        select: Optional[Sequence[str]] = None,
        top: Optional[int] = None,
    ) -> AsyncIterator[TableEntity]:
        """Lazily read rows matching a predicate.

        Args:
            table_name: Table to read
            filter: Predicate text (None = all rows)
            select: Property names to return (None = all properties);
                reserved attributes are always returned
            top: Maximum number of rows to yield

        Yields:
            Rows in (partition key, row key) order

        Raises:
            TableNotFoundError: If the table does not exist
            FilterSyntaxError: If the predicate cannot be parsed
        """
        ...

    @abstractmethod
    async def create_table(self, table_name: str) -> bool:
        """Create a table if it does not exist.

        Returns:
            True if the table was created, False if it already existed
        """
        ...

    @abstractmethod
    async def delete_table(self, table_name: str) -> bool:
        """Delete a table and every row in it.

        Returns:
            True if the table existed
        """
        ...

    @abstractmethod
    async def table_exists(self, table_name: str) -> bool:
        """Check whether a table exists."""
        ...

    @abstractmethod
    async def list_tables(self) -> list[str]:
        """Names of every table, sorted."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...


def new_etag(timestamp: datetime) -> str:
    """Build the weak etag assigned to a row written at timestamp."""
    stamp = timestamp.strftime("%Y-%m-%dT%H:%M:%S.%f") + "Z"
    return f"W/\"datetime'{stamp.replace(':', '%3A')}'\""


def utc_now() -> datetime:
    """Current UTC time, strictly increasing within the process.

    Etags derive from the write time, so two writes never share one.
    """
    global _last_write_time
    with _clock_lock:
        now = datetime.now(timezone.utc)
        if _last_write_time is not None and now <= _last_write_time:
            now = _last_write_time + timedelta(microseconds=1)
        _last_write_time = now
        return now


def validate_transaction(actions: Sequence[TransactionAction]) -> None:
    """Check the shape rules every transaction must satisfy.

    Raises:
        TransactionFailedError: 400 on an empty, oversized, cross-partition
            or duplicate-key transaction
    """
    if not actions:
        raise TransactionFailedError("Transaction contains no actions", status=400)
    if len(actions) > MAX_TRANSACTION_ACTIONS:
        raise TransactionFailedError(
            f"Transaction has {len(actions)} actions; at most "
            f"{MAX_TRANSACTION_ACTIONS} are allowed",
            status=400,
        )

    partition = actions[0].entity.partition_key
    if any(a.entity.partition_key != partition for a in actions):
        raise TransactionFailedError(
            "All actions in a transaction must share one partition key", status=400
        )

    seen: set[str] = set()
    for index, action in enumerate(actions):
        key = action.entity.row_key
        if key in seen:
            raise TransactionFailedError(
                f"Row key {key!r} appears more than once in the transaction",
                status=400,
                failed_index=index,
            )
        seen.add(key)


def check_action(
    action: TransactionAction,
    existing: Optional[TableEntity],
    index: Optional[int] = None,
) -> None:
    """Check one action against the currently stored row.

    Args:
        action: Action to apply
        existing: Stored row with the same key, or None
        index: Position of the action in its transaction

    Raises:
        TransactionFailedError: 409, 404 or 412 when the action cannot apply
    """
    entity = action.entity
    kind = action.action_type

    if kind is TransactionActionType.ADD:
        if existing is not None:
            raise TransactionFailedError(
                f"The specified entity already exists: PartitionKey={entity.partition_key!r}, "
                f"RowKey={entity.row_key!r}",
                status=409,
                failed_index=index,
            )
        return

    if kind.is_update or kind is TransactionActionType.DELETE:
        if existing is None:
            raise TransactionFailedError(
                f"The specified resource does not exist: PartitionKey={entity.partition_key!r}, "
                f"RowKey={entity.row_key!r}",
                status=404,
                failed_index=index,
            )

    if existing is not None and kind is not TransactionActionType.ADD:
        if entity.etag and entity.etag != ETAG_ANY and entity.etag != existing.etag:
            raise TransactionFailedError(
                f"The update condition specified in the request was not satisfied: "
                f"PartitionKey={entity.partition_key!r}, RowKey={entity.row_key!r}",
                status=412,
                failed_index=index,
            )


def apply_action(
    action: TransactionAction,
    existing: Optional[TableEntity],
    timestamp: datetime,
) -> Optional[TableEntity]:
    """Compute the row stored after an action.

    Returns:
        The new stored row, or None when the row is deleted
    """
    if action.action_type is TransactionActionType.DELETE:
        return None

    stored = action.entity.copy()
    if existing is not None and action.action_type.is_merge:
        merged = dict(existing.properties)
        merged.update(stored.properties)
        stored.properties = merged
    stored.timestamp = timestamp
    stored.etag = new_etag(timestamp)
    return stored


def project(row: TableEntity, select: Optional[Sequence[str]]) -> TableEntity:
    """Copy a row keeping only the selected properties."""
    result = row.copy()
    if select is not None:
        wanted = set(select)
        result.properties = {k: v for k, v in row.properties.items() if k in wanted}
    return result


def create_table_store(settings: Optional["Settings"] = None) -> TableStore:
    """Factory function to create a row store from configuration.

    Args:
        settings: Library settings (defaults loaded from the environment)

    Returns:
        Appropriate TableStore implementation

    Raises:
        ValueError: If the backend is not supported
    """
    from ..config import Settings, StoreBackend
    from .memory import InMemoryTableStore
    from .sqlite import SQLiteTableStore

    settings = settings or Settings()
    backend = settings.backend

    if backend == StoreBackend.MEMORY:
        return InMemoryTableStore()
    elif backend == StoreBackend.SQLITE:
        return SQLiteTableStore(
            settings.data_dir,
            wal_mode=settings.wal_mode,
            busy_timeout_ms=settings.busy_timeout_ms,
        )
    else:
        raise ValueError(f"Unsupported store backend: {backend}")
