"""
Unit tests for the filter evaluator.

Tests cover:
- Comparisons and literal kinds
- Logical operators and grouping
- Missing properties and nulls
- Syntax errors
"""

import uuid
from datetime import datetime, timezone

import pytest

from tablemap.errors import FilterSyntaxError
from tablemap.query.odata import compile_filter, matches
from tablemap.rows.entity import TableEntity


@pytest.fixture
def row():
    """A row with one property of each common kind."""
    return TableEntity(
        "tenant_1",
        "user_7",
        timestamp=datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc),
        etag='W/"1"',
        properties={
            "Name": "O'Hara",
            "Age": 42,
            "Score": 7.5,
            "Vip": True,
            "IsDeleted": False,
            "Joined": datetime(2020, 1, 1, tzinfo=timezone.utc),
            "Ref": uuid.UUID("12345678-1234-5678-1234-567812345678"),
            "Blob": b"\x0a\xff",
            "Nothing": None,
        },
    )


class TestComparisons:
    """Tests for comparison operators."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Age eq 42", True),
            ("Age ne 42", False),
            ("Age gt 41", True),
            ("Age ge 42", True),
            ("Age lt 42", False),
            ("Age le 42L", True),
            ("Score gt 7", True),
            ("Score eq 7.5", True),
            ("Vip eq true", True),
            ("IsDeleted eq false", True),
            ("Name eq 'O''Hara'", True),
            ("Name gt 'A'", True),
        ],
    )
    def test_native_kinds(self, row, text, expected):
        """Each operator works across native kinds."""
        assert matches(text, row) is expected

    def test_reserved_names(self, row):
        """Reserved names resolve to row attributes."""
        assert matches("PartitionKey eq 'tenant_1' and RowKey eq 'user_7'", row)
        assert matches("Timestamp ge datetime'2024-06-01T00:00:00Z'", row)
        assert matches("ETag eq 'W/\"1\"'", row)

    def test_typed_literals(self, row):
        """datetime, guid and binary literals compare to stored values."""
        assert matches("Joined eq datetime'2020-01-01T00:00:00Z'", row)
        assert matches("Ref eq guid'12345678-1234-5678-1234-567812345678'", row)
        assert matches("Blob eq X'0aff'", row)

    def test_kind_mismatch(self, row):
        """Different kinds are unequal and unordered."""
        assert not matches("Age eq '42'", row)
        assert matches("Age ne '42'", row)
        assert not matches("Age gt '1'", row)
        assert not matches("Vip eq 1", row)

    def test_literal_on_left(self, row):
        """Operands can appear in either order."""
        assert matches("40 lt Age", row)


class TestMissingAndNull:
    """Tests for absent properties and null."""

    def test_missing_property(self, row):
        """Comparisons with a missing property are false."""
        assert not matches("Unknown eq 1", row)
        assert not matches("Unknown ne 1", row)
        assert not matches("Unknown gt 1", row)

    def test_missing_eq_null(self, row):
        """A missing property equals null."""
        assert matches("Unknown eq null", row)
        assert not matches("Unknown ne null", row)

    def test_null_property(self, row):
        """An explicit null equals null only."""
        assert matches("Nothing eq null", row)
        assert not matches("Nothing eq 'x'", row)
        assert matches("Age ne null", row)


class TestLogic:
    """Tests for logical operators."""

    def test_and_or_precedence(self, row):
        """and binds tighter than or."""
        assert matches("Age eq 1 and Vip eq true or Score eq 7.5", row)
        assert not matches("Age eq 1 and (Vip eq true or Score eq 7.5)", row)

    def test_not(self, row):
        """not negates its operand."""
        assert matches("not Age eq 1", row)
        assert not matches("not (Age eq 42)", row)

    def test_bare_boolean(self, row):
        """A bare property is true only when it holds true."""
        assert matches("Vip", row)
        assert not matches("IsDeleted", row)
        assert not matches("Age", row)

    def test_empty_matches_everything(self, row):
        """Empty and None filters match every row."""
        assert matches("", row)
        assert matches(None, row)
        assert matches("   ", row)


class TestSyntax:
    """Tests for rejected filters."""

    @pytest.mark.parametrize(
        "text",
        [
            "Age eq",
            "(Age eq 1",
            "Age eq 1)",
            "Age eq 1 and",
            "Age @ 1",
            "Joined eq datetime'not-a-date'",
            "Age eq 1 Name",
        ],
    )
    def test_invalid(self, text):
        """Malformed filters raise FilterSyntaxError."""
        with pytest.raises(FilterSyntaxError):
            compile_filter(text)

    def test_error_position(self):
        """Errors carry the offending position."""
        with pytest.raises(FilterSyntaxError) as exc_info:
            compile_filter("Age # 1")
        assert exc_info.value.position == 4
        assert exc_info.value.status == 400

    def test_compiled_filters_cached(self):
        """Compiling the same text twice reuses the predicate."""
        assert compile_filter("Age eq 1") is compile_filter("Age eq 1")
