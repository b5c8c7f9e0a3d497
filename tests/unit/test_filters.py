"""
Unit tests for predicate and projection builders.

Tests cover:
- Fixed clause order
- Skipping blank inputs
- Quoting of key values
- Column projection lists
"""

from dataclasses import dataclass

from tablemap.query.filters import build_columns, build_filter, quote
from tablemap.schema.registry import build_metadata
from tablemap.schema.types import column, partition_key, row_key, table


@table("Orders")
@dataclass
class Order:
    customer: str = partition_key(column="Customer")
    order_id: str = row_key()
    total: float = column("Total")
    note: str = column()


@table("Ledger", soft_delete=False)
@dataclass
class LedgerLine:
    account: str = partition_key()
    line: str = row_key()
    amount: float = column()


class TestBuildFilter:
    """Tests for build_filter."""

    def test_all_clauses_in_order(self):
        """Soft delete, partition, row, then the free filter."""
        assert build_filter(True, "A", "B", "X eq 1") == (
            "IsDeleted eq false and PartitionKey eq 'A' and RowKey eq 'B' and X eq 1"
        )

    def test_nothing(self):
        """No restrictions produce an empty predicate."""
        assert build_filter(False) == ""

    def test_soft_delete_only(self):
        """Soft-delete tables exclude tagged rows by default."""
        assert build_filter() == "IsDeleted eq false"

    def test_include_soft_deleted(self):
        """Tagged rows can be included explicitly."""
        assert build_filter(True, "A", include_soft_deleted=True) == "PartitionKey eq 'A'"

    def test_blank_inputs_skipped(self):
        """Blank keys and filters contribute nothing."""
        assert build_filter(False, "  ", "", "   ") == ""
        assert build_filter(False, None, "r1") == "RowKey eq 'r1'"

    def test_filter_appended_verbatim(self):
        """The free filter is not wrapped in parentheses."""
        result = build_filter(True, filter="A eq 1 or B eq 2")
        assert result == "IsDeleted eq false and A eq 1 or B eq 2"

    def test_key_quotes_doubled(self):
        """Embedded quotes in keys are escaped."""
        assert build_filter(False, "O'Brien") == "PartitionKey eq 'O''Brien'"

    def test_deterministic(self):
        """The same inputs always give the same text."""
        assert build_filter(True, "A", "B", "C eq 1") == build_filter(True, "A", "B", "C eq 1")

    def test_quote(self):
        """quote wraps and escapes."""
        assert quote("it's") == "'it''s'"
        assert quote("") == "''"


class TestBuildColumns:
    """Tests for build_columns."""

    def test_full(self):
        """Reserved columns come first, then mapped columns and IsDeleted."""
        assert build_columns(build_metadata(Order)) == [
            "PartitionKey",
            "RowKey",
            "ETag",
            "Timestamp",
            "Customer",
            "Total",
            "note",
            "IsDeleted",
        ]

    def test_minimal(self):
        """Minimal projections only carry reserved columns."""
        assert build_columns(build_metadata(Order), minimal=True) == [
            "PartitionKey",
            "RowKey",
            "ETag",
            "Timestamp",
        ]

    def test_hard_delete_type(self):
        """Types without soft delete do not request IsDeleted."""
        assert build_columns(build_metadata(LedgerLine)) == [
            "PartitionKey",
            "RowKey",
            "ETag",
            "Timestamp",
            "amount",
        ]
