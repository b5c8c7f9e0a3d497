"""
SQLite-backed row store.

Each table lives in its own SQLite file under the data directory, holding
one rows table keyed by (partition_key, row_key). Properties are stored as
tagged JSON so every storage-native kind round-trips exactly.

Invariants:
    - One SQLite file per table
    - Every write runs inside BEGIN IMMEDIATE ... COMMIT; a rejected
      action rolls the whole transaction back
    - Failure statuses match InMemoryTableStore

How to change safely:
    - Schema changes must keep reading files written by older versions
    - Never change the property tag names; stored rows depend on them

Table schema:
    rows:
        - partition_key TEXT
        - row_key TEXT
        - timestamp TEXT (ISO-8601, UTC)
        - etag TEXT
        - properties_json TEXT ({"Name": {"type": "Edm.String", "value": ...}})
        - PRIMARY KEY (partition_key, row_key)
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import re
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Sequence

from ..errors import TableNotFoundError
from ..query.odata import compile_filter
from ..rows.entity import TableEntity
from ..schema.types import EdmType, EntityProperty
from .base import (
    TransactionAction,
    apply_action,
    check_action,
    project,
    utc_now,
    validate_transaction,
)

logger = logging.getLogger(__name__)

_TABLE_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_FILE_PREFIX = "table_"


class SQLiteTableStore:
    """Row store persisting each table to a SQLite file.

    Thread safety:
        Each database connection is created per-operation. Writes are
        serialized by an asyncio lock; SQLite handles concurrent readers
        via WAL mode.

    Example:
        >>> store = SQLiteTableStore("/var/lib/tablemap")
        >>> await store.create_table("Users")
        >>> await store.submit_transaction("Users", actions)
    """

    def __init__(
        self,
        data_dir: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for SQLite database files
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.data_dir = Path(data_dir)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._lock = asyncio.Lock()

    def _get_db_path(self, table_name: str) -> Path:
        """Get database file path for a table."""
        if not _TABLE_NAME_RE.match(table_name or ""):
            raise ValueError(f"Invalid table name: {table_name!r}")
        return self.data_dir / f"{_FILE_PREFIX}{table_name}.db"

    @contextmanager
    def _get_connection(self, table_name: str, create: bool = False) -> Iterator[sqlite3.Connection]:
        """Get a database connection for a table.

        Args:
            table_name: Table name
            create: Whether to create the database if it does not exist

        Yields:
            SQLite connection

        Raises:
            TableNotFoundError: If the database doesn't exist and create=False
        """
        db_path = self._get_db_path(table_name)

        if not create and not db_path.exists():
            raise TableNotFoundError(table_name)

        db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS rows (
                partition_key TEXT NOT NULL,
                row_key TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                etag TEXT NOT NULL,
                properties_json TEXT NOT NULL DEFAULT '{}',
                PRIMARY KEY (partition_key, row_key)
            );
        """)

    async def submit_transaction(
        self, table_name: str, actions: Sequence[TransactionAction]
    ) -> None:
        """Apply a batch of same-partition actions atomically."""
        async with self._lock:
            with self._get_connection(table_name) as conn:
                validate_transaction(actions)
                self._apply(conn, actions, transactional=True)

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
            with self._get_connection(table_name) as conn:
                self._apply(conn, [action], transactional=False)

    def _apply(
        self,
        conn: sqlite3.Connection,
        actions: Sequence[TransactionAction],
        transactional: bool,
    ) -> None:
        now = utc_now()
        conn.execute("BEGIN IMMEDIATE")
        try:
            for index, action in enumerate(actions):
                entity = action.entity
                cursor = conn.execute(
                    "SELECT * FROM rows WHERE partition_key = ? AND row_key = ?",
                    (entity.partition_key, entity.row_key),
                )
                found = cursor.fetchone()
                existing = _row_to_entity(found) if found else None

                check_action(action, existing, index if transactional else None)
                stored = apply_action(action, existing, now)

                if stored is None:
                    conn.execute(
                        "DELETE FROM rows WHERE partition_key = ? AND row_key = ?",
                        (entity.partition_key, entity.row_key),
                    )
                else:
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO rows
                            (partition_key, row_key, timestamp, etag, properties_json)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (
                            stored.partition_key,
                            stored.row_key,
                            stored.timestamp.isoformat(),
                            stored.etag,
                            _encode_properties(stored),
                        ),
                    )

            conn.execute("COMMIT")

        except Exception:
            conn.execute("ROLLBACK")
            raise

    async def query(
        self,
        table_name: str,
        filter: Optional[str] = None,
        select: Optional[Sequence[str]] = None,
        top: Optional[int] = None,
    ) -> AsyncIterator[TableEntity]:
        """Lazily read rows matching a predicate, in key order."""
        predicate = compile_filter(filter)
        with self._get_connection(table_name) as conn:
            cursor = conn.execute("SELECT * FROM rows ORDER BY partition_key, row_key")
            found = cursor.fetchall()

        yielded = 0
        for record in found:
            if top is not None and yielded >= top:
                return
            row = _row_to_entity(record)
            if predicate(row):
                yielded += 1
                yield project(row, select)

    async def create_table(self, table_name: str) -> bool:
        """Create a table if it does not exist."""
        async with self._lock:
            if self._get_db_path(table_name).exists():
                return False
            with self._get_connection(table_name, create=True) as conn:
                self._create_schema(conn)
        logger.info("Created table", extra={"table": table_name})
        return True

    async def delete_table(self, table_name: str) -> bool:
        """Delete a table's database file (and its WAL side files)."""
        async with self._lock:
            db_path = self._get_db_path(table_name)
            if not db_path.exists():
                return False
            for suffix in ("", "-wal", "-shm"):
                Path(f"{db_path}{suffix}").unlink(missing_ok=True)
        logger.info("Deleted table", extra={"table": table_name})
        return True

    async def table_exists(self, table_name: str) -> bool:
        """Check if the table's database exists."""
        return self._get_db_path(table_name).exists()

    async def list_tables(self) -> list[str]:
        """Names of every table, sorted."""
        if not self.data_dir.exists():
            return []
        return sorted(p.stem[len(_FILE_PREFIX):] for p in self.data_dir.glob(f"{_FILE_PREFIX}*.db"))

    async def close(self) -> None:
        """Nothing to release; connections are per-operation."""
        logger.debug("SQLiteTableStore closed")


def _encode_value(prop: EntityProperty) -> Any:
    value = prop.value
    if prop.edm_type is EdmType.BINARY:
        return base64.b64encode(value).decode("ascii")
    if prop.edm_type in (EdmType.GUID, EdmType.UINT64):
        return str(value)
    if prop.edm_type is EdmType.DATETIME:
        return value.isoformat()
    return value


def _decode_value(edm_type: EdmType, raw: Any) -> Any:
    if edm_type is EdmType.BINARY:
        return base64.b64decode(raw)
    if edm_type is EdmType.GUID:
        return uuid.UUID(raw)
    if edm_type is EdmType.UINT64:
        return int(raw)
    if edm_type is EdmType.DATETIME:
        return datetime.fromisoformat(raw)
    if edm_type is EdmType.DOUBLE:
        return float(raw)
    return raw


def _encode_properties(row: TableEntity) -> str:
    encoded: dict[str, Any] = {}
    for name, prop in row.properties.items():
        if prop is None:
            encoded[name] = None
        else:
            encoded[name] = {"type": prop.edm_type.value, "value": _encode_value(prop)}
    return json.dumps(encoded)


def _row_to_entity(record: sqlite3.Row) -> TableEntity:
    row = TableEntity(
        partition_key=record["partition_key"],
        row_key=record["row_key"],
        timestamp=datetime.fromisoformat(record["timestamp"]),
        etag=record["etag"],
    )
    for name, tagged in json.loads(record["properties_json"]).items():
        if tagged is None:
            row.properties[name] = None
        else:
            edm_type = EdmType(tagged["type"])
            row.properties[name] = EntityProperty(edm_type, _decode_value(edm_type, tagged["value"]))
    return row
