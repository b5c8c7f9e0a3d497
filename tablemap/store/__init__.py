"""
Row-store abstraction for tablemap.

This module provides a pluggable TableStore interface supporting:
- SQLite (one database file per table)
- In-memory (for testing)

Invariants:
    - Transactions are atomic, single-partition and at most 100 rows
    - Every backend reports the same failure statuses

How to change safely:
    - New backends must implement the TableStore protocol
    - Run the shared store tests against every backend
"""

from .base import (
    MAX_TRANSACTION_ACTIONS,
    TableStore,
    TransactionAction,
    TransactionActionType,
    create_table_store,
)
from .memory import InMemoryTableStore
from .sqlite import SQLiteTableStore

__all__ = [
    # Protocol and types
    "TableStore",
    "TransactionAction",
    "TransactionActionType",
    "MAX_TRANSACTION_ACTIONS",
    # Factory
    "create_table_store",
    # Implementations
    "InMemoryTableStore",
    "SQLiteTableStore",
]
