"""
Unit tests for object <-> row conversion.

Tests cover:
- Round trips for native, converted and JSON columns
- Key derivation and fallbacks
- Soft-delete stamping and minimal rows
- Corrupt stored data
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

import pytest
from pydantic import BaseModel

from tablemap.errors import CoercionError, DefinitionError, MissingKeyError
from tablemap.rows.entity import TableEntity
from tablemap.rows.transform import to_object, to_objects, to_row, to_rows
from tablemap.schema.registry import discover
from tablemap.schema.types import (
    EdmType,
    EntityProperty,
    column,
    etag,
    partition_key,
    row_key,
    table,
    timestamp,
)


class Status(Enum):
    ACTIVE = 1
    SUSPENDED = 2


class Address(BaseModel):
    street: str
    city: str


@table("Customers")
@dataclass
class Customer:
    region: str = partition_key()
    customer_id: str = row_key()
    version: Optional[str] = etag()
    modified: Optional[datetime] = timestamp()
    name: str = column("Name")
    visits: int = column("Visits", default=0)
    balance: Optional[float] = column()
    status: Status = column("Status", default=Status.ACTIVE)
    joined: Optional[date] = column()
    credit: Optional[Decimal] = column()
    guid: Optional[uuid.UUID] = column()
    avatar: Optional[bytes] = column()
    last_seen: Optional[datetime] = column()
    vip: bool = column(default=False)
    tags: list[str] = column(json=True, default_factory=list)
    address: Optional[Address] = column(json=True)


@table("Events", soft_delete=False)
@dataclass
class Event:
    stream: str = partition_key(default_value="main")
    event_id: str = row_key(autogenerate=True)
    kind: str = column()


@table("Counters")
@dataclass
class Counter:
    bucket: int = partition_key()
    slot: int = row_key()
    hits: int = column()
    cache: dict = field(default_factory=dict, init=False)


@table("Notes")
@dataclass
class Note:
    owner: str = column()


def _customer() -> Customer:
    return Customer(
        region="eu",
        customer_id="c-1",
        name="Ada",
        visits=3,
        balance=12.5,
        status=Status.SUSPENDED,
        joined=date(2023, 5, 17),
        credit=Decimal("100.10"),
        guid=uuid.UUID("12345678-1234-5678-1234-567812345678"),
        avatar=b"\x89PNG",
        last_seen=datetime(2024, 2, 1, 9, 30, tzinfo=timezone.utc),
        vip=True,
        tags=["a", "b"],
        address=Address(street="1 Main St", city="Dublin"),
    )


class TestToRow:
    """Tests for object -> row conversion."""

    def test_keys_and_columns(self):
        """Keys go to reserved attributes, members to columns."""
        row = to_row(discover(Customer), _customer())

        assert row.partition_key == "eu"
        assert row.row_key == "c-1"
        assert row.etag == "*"
        assert row["Name"] == "Ada"
        assert row["Visits"] == 3
        assert row["Status"] == "SUSPENDED"
        assert row["joined"] == "2023-05-17"
        assert row["credit"] == "100.10"
        assert row.property("guid").edm_type is EdmType.GUID
        assert row.property("avatar").edm_type is EdmType.BINARY
        assert row["tags"] == '["a","b"]'

    def test_soft_delete_stamp(self):
        """Full writes of soft-delete types carry IsDeleted=false."""
        row = to_row(discover(Customer), _customer())
        assert row["IsDeleted"] is False

    def test_no_stamp_without_soft_delete(self):
        """Hard-delete types get no IsDeleted column."""
        row = to_row(discover(Event), Event(stream="s", event_id="e", kind="k"))
        assert "IsDeleted" not in row

    def test_none_not_written(self):
        """None members produce no column at all."""
        row = to_row(discover(Customer), Customer(region="eu", customer_id="c-2", name="Bo"))

        assert "balance" not in row
        assert "address" not in row
        assert "tags" in row

    def test_minimal(self):
        """Minimal rows only carry keys and etag."""
        item = _customer()
        item.version = 'W/"v1"'
        row = to_row(discover(Customer), item, minimal=True)

        assert row.partition_key == "eu"
        assert row.row_key == "c-1"
        assert row.etag == 'W/"v1"'
        assert len(row) == 0

    def test_partition_key_fallback(self):
        """An empty partition key uses the declared fallback."""
        row = to_row(discover(Event), Event(stream="", event_id="e1", kind="k"))
        assert row.partition_key == "main"

    def test_row_key_autogenerated(self):
        """An empty row key is replaced by a new UUID."""
        first = to_row(discover(Event), Event(stream="s", event_id=None, kind="k"))
        second = to_row(discover(Event), Event(stream="s", event_id=None, kind="k"))

        assert str(uuid.UUID(first.row_key)) == first.row_key
        assert first.row_key != second.row_key

    def test_missing_partition_key(self):
        """No value and no fallback raises MissingKeyError."""
        with pytest.raises(MissingKeyError) as exc_info:
            to_row(discover(Customer), Customer(region=None, customer_id="c", name="x"))
        assert exc_info.value.field_name == "region"

    def test_missing_row_key(self):
        """Row keys without autogeneration are required."""
        with pytest.raises(MissingKeyError) as exc_info:
            to_row(discover(Customer), Customer(region="eu", customer_id="", name="x"))
        assert exc_info.value.field_name == "customer_id"

    def test_non_text_keys(self):
        """Integer keys are written as text."""
        row = to_row(discover(Counter), Counter(bucket=7, slot=12, hits=1))
        assert (row.partition_key, row.row_key) == ("7", "12")

    def test_keyless_type_rejected(self):
        """Types without keys cannot be written."""
        with pytest.raises(DefinitionError):
            to_row(discover(Note), Note(owner="x"))

    def test_to_rows(self):
        """to_rows converts every item in order."""
        rows = to_rows(discover(Event), [Event("s", "1", "a"), Event("s", "2", "b")])
        assert [r.row_key for r in rows] == ["1", "2"]


class TestToObject:
    """Tests for row -> object conversion."""

    def test_round_trip(self):
        """Every mapped member survives a round trip."""
        meta = discover(Customer)
        original = _customer()

        restored = to_object(meta, to_row(meta, original))

        original.version = "*"
        assert restored == original

    def test_reserved_attributes(self):
        """Etag and timestamp come from the row."""
        stamp = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        row = TableEntity("eu", "c-9", timestamp=stamp, etag='W/"x"', properties={"Name": "Cy"})

        restored = to_object(discover(Customer), row)

        assert restored.version == 'W/"x"'
        assert restored.modified == stamp

    def test_absent_columns_use_defaults(self):
        """Missing columns read as the member's default."""
        row = TableEntity("eu", "c-3", properties={"Name": "Di"})
        restored = to_object(discover(Customer), row)

        assert restored.visits == 0
        assert restored.status is Status.ACTIVE
        assert restored.tags == []
        assert restored.balance is None

    def test_actual_stored_type_used(self):
        """Conversion starts from the type actually stored."""
        row = TableEntity("eu", "c-4", properties={"Name": "Ed", "Visits": "12", "balance": 4})
        restored = to_object(discover(Customer), row)

        assert restored.visits == 12
        assert restored.balance == 4.0

    def test_integer_keys_parsed(self):
        """Keys are converted back to their member types."""
        row = TableEntity("7", "12", properties={"hits": 5})
        restored = to_object(discover(Counter), row)

        assert (restored.bucket, restored.slot, restored.hits) == (7, 12, 5)
        assert restored.cache == {}

    def test_blank_json_is_absent(self):
        """Blank JSON text reads as an absent column."""
        row = TableEntity("eu", "c-5", properties={"Name": "Fay", "tags": "  "})
        assert to_object(discover(Customer), row).tags == []

    def test_non_text_json_raises(self):
        """A JSON column holding a non-string is corrupt."""
        row = TableEntity("eu", "c-6", properties={"Name": "Gil", "tags": 5})
        with pytest.raises(CoercionError, match="expected JSON text"):
            to_object(discover(Customer), row)

    def test_invalid_json_raises(self):
        """Malformed JSON text raises CoercionError."""
        row = TableEntity("eu", "c-7", properties={"Name": "Hal", "address": '{"street": 1'})
        with pytest.raises(CoercionError):
            to_object(discover(Customer), row)

    def test_bad_enum_raises(self):
        """Unknown enum names are not defaulted."""
        row = TableEntity("eu", "c-8", properties={"Name": "Ivy", "Status": "DELETED"})
        with pytest.raises(CoercionError):
            to_object(discover(Customer), row)

    def test_datetime_column_utc(self):
        """Stored datetimes come back in UTC."""
        row = TableEntity("eu", "c-10", properties={"Name": "Jo"})
        row.properties["last_seen"] = EntityProperty(EdmType.DATETIME, datetime(2024, 1, 1, 8, 0))
        restored = to_object(discover(Customer), row)
        assert restored.last_seen.tzinfo == timezone.utc

    def test_to_objects_lazy(self):
        """to_objects yields one object per row."""
        rows = [TableEntity("s", "1", properties={"kind": "a"}), TableEntity("s", "2", properties={"kind": "b"})]
        assert [e.kind for e in to_objects(discover(Event), rows)] == ["a", "b"]
