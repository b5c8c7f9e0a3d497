"""
Batched write orchestrator.

BatchWriter turns a list of rows and a write operation into per-partition
transactions of at most 100 rows, submits them one at a time and reports
an aggregated BatchResult instead of raising.

Recovery rules for a rejected chunk:
    - Conflict (409) or bad request (400) with the offending index known
      and more than one row in the chunk: drop only that row, retry the rest
    - Conflict or bad request otherwise: drop the whole chunk
    - Any other failure: drop the whole chunk, one diagnostic per row

Invariants:
    - Chunks are submitted strictly sequentially, partition by partition in
      first-seen order, rows in their original relative order
    - A dropped row is never retried
    - passed + failed == number of rows given
    - Store failures never propagate; cancellation always does

How to change safely:
    - Keep the single-row special case; without it a chunk whose failure
      has no index would be retried forever
    - Test recovery with injected conflicts at the first, middle and last
      positions of a chunk
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import NamedTuple, Sequence

from ..errors import StoreError
from ..rows.entity import TableEntity
from ..schema.types import IS_DELETED_COLUMN
from ..store.base import (
    MAX_TRANSACTION_ACTIONS,
    TableStore,
    TransactionAction,
    TransactionActionType,
)

logger = logging.getLogger(__name__)

# Statuses that identify a single offending row rather than a broken chunk
_RECOVERABLE_STATUSES = frozenset({400, 409})


class OperationType(Enum):
    """Write operations offered to callers."""

    INSERT = "insert"
    UPDATE = "update"
    UPSERT = "upsert"
    DELETE = "delete"


class BatchResult(NamedTuple):
    """Outcome of a bulk write.

    Attributes:
        passed: Rows written
        failed: Rows dropped
        messages: One diagnostic line per failure, in submission order
    """

    passed: int
    failed: int
    messages: list[str]


class BatchWriter:
    """Applies bulk writes through a TableStore.

    Example:
        >>> writer = BatchWriter(store)
        >>> result = await writer.execute("Users", OperationType.INSERT, rows)
        >>> result.passed, result.failed
        (250, 0)
    """

    def __init__(
        self,
        store: TableStore,
        max_batch_size: int = MAX_TRANSACTION_ACTIONS,
        batch_threshold: int = 5,
    ) -> None:
        """Initialize the writer.

        Args:
            store: Row store to write through
            max_batch_size: Rows per transaction (1..100)
            batch_threshold: Below this many rows, rows are written one by one

        Raises:
            ValueError: If max_batch_size is out of range
        """
        if not 1 <= max_batch_size <= MAX_TRANSACTION_ACTIONS:
            raise ValueError(
                f"max_batch_size must be between 1 and {MAX_TRANSACTION_ACTIONS}, "
                f"got {max_batch_size}"
            )
        self.store = store
        self.max_batch_size = max_batch_size
        self.batch_threshold = batch_threshold

    @staticmethod
    def action_type_for(
        operation: OperationType, use_soft_delete: bool, hard_delete: bool
    ) -> TransactionActionType:
        """Map a write operation to the per-row action kind."""
        if operation is OperationType.INSERT:
            return TransactionActionType.ADD
        if operation is OperationType.UPDATE:
            return TransactionActionType.UPDATE_MERGE
        if operation is OperationType.UPSERT:
            return TransactionActionType.UPSERT_MERGE
        if operation is OperationType.DELETE:
            if use_soft_delete and not hard_delete:
                return TransactionActionType.UPDATE_MERGE
            return TransactionActionType.DELETE
        raise ValueError(f"Unsupported operation: {operation}")

    async def execute(
        self,
        table_name: str,
        operation: OperationType,
        rows: Sequence[TableEntity],
        use_soft_delete: bool = True,
        hard_delete: bool = False,
        use_batches: bool = True,
    ) -> BatchResult:
        """Write rows and report what happened.

        Args:
            table_name: Target table
            operation: Write operation
            rows: Rows to write; soft deletes tag them with IsDeleted=true
            use_soft_delete: Whether the table uses soft delete
            hard_delete: Physically delete even on soft-delete tables
            use_batches: Allow transactional chunks (False = row by row)

        Returns:
            BatchResult with counts and diagnostics
        """
        action_type = self.action_type_for(operation, use_soft_delete, hard_delete)
        soft_delete = (
            operation is OperationType.DELETE and use_soft_delete and not hard_delete
        )

        actions: list[TransactionAction] = []
        for row in rows:
            if soft_delete:
                row[IS_DELETED_COLUMN] = True
            actions.append(TransactionAction(action_type, row))

        if not actions:
            return BatchResult(0, 0, [])

        if not use_batches or len(actions) < self.batch_threshold:
            result = await self._execute_each(table_name, actions)
        else:
            result = await self._execute_batched(table_name, actions)

        logger.debug(
            "Bulk write finished",
            extra={
                "table": table_name,
                "operation": operation.value,
                "passed": result.passed,
                "failed": result.failed,
            },
        )
        return result

    async def _execute_each(
        self, table_name: str, actions: list[TransactionAction]
    ) -> BatchResult:
        passed = failed = 0
        messages: list[str] = []
        for action in actions:
            try:
                await self.store.submit(table_name, action)
            except Exception as e:
                failed += 1
                messages.append(_describe(e, action.entity))
                logger.warning(
                    "Row rejected",
                    extra={
                        "table": table_name,
                        "partition_key": action.entity.partition_key,
                        "row_key": action.entity.row_key,
                        "error": str(e),
                    },
                )
            else:
                passed += 1
        return BatchResult(passed, failed, messages)

    async def _execute_batched(
        self, table_name: str, actions: list[TransactionAction]
    ) -> BatchResult:
        # dicts keep first-seen partition order
        groups: dict[str, list[TransactionAction]] = {}
        for action in actions:
            groups.setdefault(action.entity.partition_key.upper(), []).append(action)

        passed = failed = 0
        messages: list[str] = []

        for pending in groups.values():
            while pending:
                chunk = pending[: self.max_batch_size]
                try:
                    await self.store.submit_transaction(table_name, chunk)
                except StoreError as e:
                    if e.status not in _RECOVERABLE_STATUSES:
                        failed += self._drop_chunk(table_name, chunk, e, messages)
                        del pending[: len(chunk)]
                        continue

                    index = getattr(e, "failed_index", None)
                    if len(chunk) == 1 or index is None or not 0 <= index < len(chunk):
                        messages.append(_describe(e, chunk[0].entity))
                        failed += len(chunk)
                        del pending[: len(chunk)]
                        logger.warning(
                            "Chunk rejected",
                            extra={
                                "table": table_name,
                                "partition_key": chunk[0].entity.partition_key,
                                "chunk_size": len(chunk),
                                "status": e.status,
                            },
                        )
                    else:
                        culprit = pending.pop(index)
                        messages.append(_describe(e, culprit.entity))
                        failed += 1
                        logger.warning(
                            "Row rejected, retrying rest of chunk",
                            extra={
                                "table": table_name,
                                "partition_key": culprit.entity.partition_key,
                                "row_key": culprit.entity.row_key,
                                "status": e.status,
                            },
                        )
                except Exception as e:
                    failed += self._drop_chunk(table_name, chunk, e, messages)
                    del pending[: len(chunk)]
                else:
                    passed += len(chunk)
                    del pending[: len(chunk)]
                    logger.debug(
                        "Chunk committed",
                        extra={
                            "table": table_name,
                            "partition_key": chunk[0].entity.partition_key,
                            "chunk_size": len(chunk),
                        },
                    )

        return BatchResult(passed, failed, messages)

    @staticmethod
    def _drop_chunk(
        table_name: str,
        chunk: list[TransactionAction],
        error: Exception,
        messages: list[str],
    ) -> int:
        for action in chunk:
            messages.append(_describe(error, action.entity))
        logger.warning(
            "Chunk failed",
            extra={
                "table": table_name,
                "partition_key": chunk[0].entity.partition_key,
                "chunk_size": len(chunk),
                "error": str(error),
            },
        )
        return len(chunk)


def _describe(error: Exception, row: TableEntity) -> str:
    return f"{error}; PartitionKey='{row.partition_key}'; RowKey='{row.row_key}'"
