"""
Evaluator for the row-store predicate language.

The local row stores execute the same filter strings a hosted table
service would accept: comparisons joined by and/or/not, e.g.

    IsDeleted eq false and PartitionKey eq 'tenant_1' and (Age ge 18 or Vip eq true)

Supported syntax:
    - Comparison operators: eq ne gt ge lt le
    - Logical operators: and, or, not; parentheses for grouping
    - Literals: 'text' ('' escapes a quote), integers, decimals, true,
      false, null, datetime'2024-01-01T00:00:00Z', guid'...', X'0aff'
    - Property names resolve against the row; PartitionKey, RowKey,
      Timestamp and ETag resolve to the row's reserved attributes

Invariants:
    - Comparisons against a missing property are false, except
      "eq null" which is true
    - Values of different kinds never compare equal and never order
    - An empty filter matches every row
"""

from __future__ import annotations

import functools
import operator
import re
import uuid
from datetime import datetime
from typing import Any, Callable, NamedTuple, Optional

from ..errors import FilterSyntaxError
from ..rows.entity import TableEntity
from ..schema.types import (
    ETAG_COLUMN,
    PARTITION_KEY_COLUMN,
    ROW_KEY_COLUMN,
    TIMESTAMP_COLUMN,
    ensure_utc,
)

Predicate = Callable[[TableEntity], bool]
Operand = Callable[[TableEntity], Any]

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<lparen>\()
  | (?P<rparen>\))
  | (?P<datetime>datetime'[^']*')
  | (?P<guid>guid'[^']*')
  | (?P<binary>(?:X|binary)'[^']*')
  | (?P<string>'(?:[^']|'')*')
  | (?P<number>-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?[LlDdMm]?)
  | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
    """,
    re.VERBOSE,
)

_COMPARISONS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "ge": operator.ge,
    "lt": operator.lt,
    "le": operator.le,
}

_CONSTANTS = {"true": True, "false": False, "null": None}

_RESERVED = {
    PARTITION_KEY_COLUMN: lambda row: row.partition_key,
    ROW_KEY_COLUMN: lambda row: row.row_key,
    TIMESTAMP_COLUMN: lambda row: row.timestamp,
    ETAG_COLUMN: lambda row: row.etag,
}

_MISSING = object()


class _Token(NamedTuple):
    kind: str
    text: str
    position: int


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    position = 0
    while position < len(text):
        match = _TOKEN_RE.match(text, position)
        if match is None:
            raise FilterSyntaxError(f"Unexpected character {text[position]!r}", text, position)
        kind = match.lastgroup
        if kind != "ws":
            tokens.append(_Token(kind, match.group(), position))
        position = match.end()
    return tokens


def _kind_of(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, datetime):
        return "datetime"
    if isinstance(value, (bytes, bytearray)):
        return "binary"
    if isinstance(value, uuid.UUID):
        return "guid"
    return "string"


def _compare(op: str, left: Any, right: Any) -> bool:
    if left is _MISSING or right is _MISSING:
        return op == "eq" and (left is None or right is None)
    if left is None or right is None:
        if op == "eq":
            return left is right
        if op == "ne":
            return left is not right
        return False
    if _kind_of(left) != _kind_of(right):
        return op == "ne"
    return _COMPARISONS[op](left, right)


class _Parser:
    """Recursive-descent parser producing a predicate closure.

    Grammar:
        expr       := and_expr ('or' and_expr)*
        and_expr   := unary ('and' unary)*
        unary      := 'not' unary | primary
        primary    := '(' expr ')' | operand [cmp_op operand]
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = _tokenize(text)
        self.index = 0

    def parse(self) -> Predicate:
        predicate = self._expr()
        token = self._peek()
        if token is not None:
            raise FilterSyntaxError(f"Unexpected {token.text!r}", self.text, token.position)
        return predicate

    def _peek(self) -> Optional[_Token]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _next(self) -> _Token:
        token = self._peek()
        if token is None:
            raise FilterSyntaxError("Unexpected end of filter", self.text, len(self.text))
        self.index += 1
        return token

    def _accept_keyword(self, keyword: str) -> bool:
        token = self._peek()
        if token is not None and token.kind == "name" and token.text == keyword:
            self.index += 1
            return True
        return False

    def _expr(self) -> Predicate:
        terms = [self._and_expr()]
        while self._accept_keyword("or"):
            terms.append(self._and_expr())
        if len(terms) == 1:
            return terms[0]
        return lambda row: any(term(row) for term in terms)

    def _and_expr(self) -> Predicate:
        terms = [self._unary()]
        while self._accept_keyword("and"):
            terms.append(self._unary())
        if len(terms) == 1:
            return terms[0]
        return lambda row: all(term(row) for term in terms)

    def _unary(self) -> Predicate:
        if self._accept_keyword("not"):
            inner = self._unary()
            return lambda row: not inner(row)
        return self._primary()

    def _primary(self) -> Predicate:
        token = self._peek()
        if token is not None and token.kind == "lparen":
            self.index += 1
            inner = self._expr()
            closing = self._next()
            if closing.kind != "rparen":
                raise FilterSyntaxError("Expected ')'", self.text, closing.position)
            return inner

        left = self._operand()
        token = self._peek()
        if token is None or token.kind != "name" or token.text not in _COMPARISONS:
            # bare operand: true when it evaluates to boolean true
            return lambda row: left(row) is True
        self.index += 1
        right = self._operand()
        op = token.text
        return lambda row: _compare(op, left(row), right(row))

    def _operand(self) -> Operand:
        token = self._next()
        kind, text = token.kind, token.text
        try:
            if kind == "string":
                value: Any = text[1:-1].replace("''", "'")
            elif kind == "number":
                value = _parse_number(text)
            elif kind == "datetime":
                value = ensure_utc(datetime.fromisoformat(_body(text).replace("Z", "+00:00")))
            elif kind == "guid":
                value = uuid.UUID(_body(text))
            elif kind == "binary":
                value = bytes.fromhex(_body(text))
            elif kind == "name" and text in _CONSTANTS:
                value = _CONSTANTS[text]
            elif kind == "name" and text not in _COMPARISONS and text not in ("and", "or", "not"):
                return _property(text)
            else:
                raise FilterSyntaxError(f"Expected a value, found {text!r}", self.text, token.position)
        except ValueError as e:
            raise FilterSyntaxError(f"Invalid literal {text!r} ({e})", self.text, token.position) from e
        return lambda row: value


def _body(text: str) -> str:
    return text[text.index("'") + 1 : -1]


def _parse_number(text: str) -> Any:
    suffix = text[-1]
    if suffix in "LlDdMm":
        text = text[:-1]
    if suffix in "DdMm" or any(c in text for c in ".eE"):
        return float(text)
    return int(text)


def _property(name: str) -> Operand:
    reserved = _RESERVED.get(name)
    if reserved is not None:
        return reserved

    def resolve(row: TableEntity) -> Any:
        if name not in row:
            return _MISSING
        return row.get(name)

    return resolve


@functools.lru_cache(maxsize=256)
def compile_filter(text: Optional[str]) -> Predicate:
    """Compile a filter string into a row predicate.

    Args:
        text: Filter text; None or blank matches every row

    Returns:
        Callable taking a TableEntity and returning whether it matches

    Raises:
        FilterSyntaxError: If the text cannot be parsed
    """
    if text is None or not text.strip():
        return lambda row: True
    return _Parser(text).parse()


def matches(text: Optional[str], row: TableEntity) -> bool:
    """Evaluate a filter string against a single row."""
    return compile_filter(text)(row)
