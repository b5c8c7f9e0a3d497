"""
Error types for tablemap.

This module defines all exception types raised by the library:
- TableMapError: Base exception
- DefinitionError: A mapped type is structurally invalid
- MissingKeyError: An instance cannot supply a partition or row key
- CoercionError: A value cannot be converted between wire and domain form
- KeyFormatError: A partition or row key contains disallowed characters
- StoreError: Row store failures (and its subclasses)

Invariants:
    - All errors inherit from TableMapError
    - Errors include context for debugging
    - Batch write failures are never raised; they are reported in BatchResult
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TableMapError(Exception):
    """Base exception for all tablemap errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TABLEMAP_ERROR"
        self.details = details or {}


class DefinitionError(TableMapError):
    """The mapping declared on a type is invalid.

    Raised when:
    - The type is not a dataclass decorated with @table
    - A key, etag or timestamp role is declared more than once
    - A column name collides with a reserved column name
    - The type maps no columns and no keys

    The type definition must be fixed; retrying never helps.
    """

    def __init__(self, message: str, type_name: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="DEFINITION_ERROR",
            details={"type_name": type_name},
        )
        self.type_name = type_name


class MissingKeyError(TableMapError):
    """An instance has no usable partition or row key.

    Attributes:
        type_name: The mapped type
        field_name: The key field that produced no value
    """

    def __init__(self, message: str, type_name: str, field_name: str) -> None:
        super().__init__(
            message,
            code="MISSING_KEY",
            details={"type_name": type_name, "field_name": field_name},
        )
        self.type_name = type_name
        self.field_name = field_name


class CoercionError(TableMapError):
    """A value could not be converted between storage and domain types."""

    def __init__(self, message: str, source_type: Any = None, target_type: Any = None) -> None:
        super().__init__(
            message,
            code="COERCION_ERROR",
            details={
                "source_type": _type_name(source_type),
                "target_type": _type_name(target_type),
            },
        )
        self.source_type = source_type
        self.target_type = target_type


class KeyFormatError(TableMapError, ValueError):
    """A proposed partition or row key contains disallowed characters."""

    def __init__(self, key_name: str, value: str) -> None:
        super().__init__(
            f"{key_name} {value!r} contains a character that is not allowed in table keys",
            code="KEY_FORMAT_ERROR",
            details={"key_name": key_name, "value": value},
        )
        self.key_name = key_name
        self.value = value


class StoreError(TableMapError):
    """Base class for errors raised by row store clients.

    Attributes:
        status: HTTP-style status code describing the failure
    """

    def __init__(
        self,
        message: str,
        status: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = dict(details or {})
        details["status"] = status
        super().__init__(message, code=code or "STORE_ERROR", details=details)
        self.status = status


class TransactionFailedError(StoreError):
    """A transactional (or single-row) write was rejected.

    Transactions fail at the first offending action, so at most one
    index is reported.

    Attributes:
        status: 400 (bad request), 404 (not found), 409 (conflict),
            412 (precondition failed), ...
        failed_index: Index of the offending action, if known
    """

    def __init__(
        self,
        message: str,
        status: int,
        failed_index: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            status=status,
            code="TRANSACTION_FAILED",
            details={"failed_index": failed_index},
        )
        self.failed_index = failed_index


class TableNotFoundError(StoreError):
    """The table does not exist."""

    def __init__(self, table_name: str) -> None:
        super().__init__(
            f"Table not found: {table_name}",
            status=404,
            code="TABLE_NOT_FOUND",
            details={"table_name": table_name},
        )
        self.table_name = table_name


class FilterSyntaxError(StoreError):
    """A filter predicate could not be parsed."""

    def __init__(self, message: str, filter_text: str, position: int) -> None:
        super().__init__(
            f"{message} at position {position} in filter {filter_text!r}",
            status=400,
            code="FILTER_SYNTAX",
            details={"filter": filter_text, "position": position},
        )
        self.filter_text = filter_text
        self.position = position


def _type_name(tp: Any) -> Optional[str]:
    if tp is None:
        return None
    return getattr(tp, "__name__", None) or str(tp)
