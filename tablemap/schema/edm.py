"""
Value coercion between storage-native and domain types.

The row store persists a closed set of value kinds (see EdmType). Domain
objects use richer types: enums, dates, times, decimals and custom classes
with their own textual parse/format support. This module converts between
the two representations.

Invariants:
    - Native values pass through untouched, except datetimes which are
      always normalized to UTC
    - Enum parsing is strict: unknown names raise, never default
    - Conversion failures raise CoercionError; nothing is repaired,
      retried or swallowed here

Example:
    >>> to_native(Color, Color.RED)
    'RED'
    >>> from_native(EdmType.STRING, Color, "RED")
    <Color.RED: 1>
"""

from __future__ import annotations

import base64
import dataclasses
import types
import typing
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Union

from ..errors import CoercionError
from .types import EdmType, EntityProperty, edm_type_for, ensure_utc

# Classmethods tried, in order, to parse text into a custom type
_PARSE_METHODS = ("fromisoformat", "parse", "from_string")

_TEXT_TEMPORAL_TYPES = (date, time, Decimal)


def unwrap_optional(tp: Any) -> tuple[Any, bool]:
    """Split Optional[T] / T | None into (T, True).

    Returns:
        Tuple of (inner type, nullable)
    """
    origin = typing.get_origin(tp)
    if origin is Union or (hasattr(types, "UnionType") and isinstance(tp, types.UnionType)):
        args = [a for a in typing.get_args(tp) if a is not type(None)]
        nullable = len(args) != len(typing.get_args(tp))
        if len(args) == 1:
            return args[0], nullable
        return tp, nullable
    return tp, False


def is_native_type(tp: Any) -> bool:
    """Whether a (possibly Optional) type is storage-native."""
    inner, _ = unwrap_optional(tp)
    return edm_type_for(inner) is not None


def is_column_compatible(tp: Any) -> bool:
    """Whether values of a type can be stored in a plain (non-JSON) column.

    Containers, dataclasses and models have no single-value textual form
    and must be declared with column(json=True).
    """
    inner, _ = unwrap_optional(tp)
    if edm_type_for(inner) is not None:
        return True
    if typing.get_origin(inner) is not None or not isinstance(inner, type):
        return False
    if issubclass(inner, Enum) or issubclass(inner, _TEXT_TEMPORAL_TYPES):
        return True
    if issubclass(inner, (list, tuple, set, frozenset, dict)):
        return False
    if dataclasses.is_dataclass(inner) or hasattr(inner, "model_validate"):
        return False
    return True


def format_value(value: Any) -> str:
    """Textual form of a value, used for keys and filter substitution."""
    if isinstance(value, EntityProperty):
        value = value.value
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    return str(value)


def to_native(domain_type: Any, value: Any) -> Any:
    """Convert a domain value to a storage-native value.

    Args:
        domain_type: Declared type of the value
        value: Domain value

    Returns:
        A value whose type is one of the storage-native types, or None

    Raises:
        CoercionError: If the value has no single-value textual form
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return ensure_utc(value)
    if edm_type_for(type(value)) is not None:
        return value
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, (list, tuple, set, frozenset, dict)) or dataclasses.is_dataclass(value):
        raise CoercionError(
            f"Cannot store '{type(value).__name__}' declared as "
            f"'{_name(domain_type)}' in a column; declare it with json=True",
            source_type=type(value),
            target_type=EdmType.STRING,
        )
    return format_value(value)


def from_native(native_type: EdmType | type | None, domain_type: Any, value: Any) -> Any:
    """Convert a stored value to a domain type.

    Args:
        native_type: Kind of the stored value (inferred from value if None)
        domain_type: Declared type of the destination member
        value: Stored value

    Returns:
        Value of the domain type, or None

    Raises:
        CoercionError: If the value cannot be converted
    """
    if value is None:
        return None
    if isinstance(value, EntityProperty):
        native_type = native_type or value.edm_type
        value = value.value

    target, _ = unwrap_optional(domain_type)
    if target is Any or target is object:
        return value
    if isinstance(value, datetime):
        value = ensure_utc(value)
    if type(value) is target:
        return value

    source = native_type or type(value)
    try:
        return _convert(target, value)
    except CoercionError:
        raise
    except (ValueError, TypeError, KeyError, ArithmeticError) as e:
        raise CoercionError(
            f"Cannot convert {_name(source)} value {value!r} to '{_name(target)}': {e}",
            source_type=source,
            target_type=target,
        ) from e


def _convert(target: Any, value: Any) -> Any:
    if not isinstance(target, type):
        raise TypeError(f"'{_name(target)}' is not a concrete type")

    if issubclass(target, Enum):
        if isinstance(value, str):
            try:
                return target[value]
            except KeyError:
                return target(value)
        return target(value)

    if target is bool:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "false"):
                return lowered == "true"
            raise ValueError("expected 'true' or 'false'")
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise TypeError(f"no boolean form for {type(value).__name__}")

    if isinstance(value, datetime):
        if target is datetime:
            return ensure_utc(value)
        if target is date:
            return value.date()
        if target is time:
            return value.time()

    if target is str:
        return format_value(value)
    if target is bytes and isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if target is bytes and isinstance(value, str):
        return base64.b64decode(value, validate=True)
    if target is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if target is int and isinstance(value, float):
        if not value.is_integer():
            raise ValueError("value has a fractional part")
        return int(value)
    if target is uuid.UUID and isinstance(value, str):
        return uuid.UUID(value)

    if isinstance(value, str):
        for method_name in _PARSE_METHODS:
            parser = getattr(target, method_name, None)
            if callable(parser):
                result = parser(value)
                if isinstance(result, datetime):
                    return ensure_utc(result)
                return result

    return target(value)


def _name(tp: Any) -> str:
    if isinstance(tp, EdmType):
        return tp.value
    return getattr(tp, "__name__", None) or str(tp)
