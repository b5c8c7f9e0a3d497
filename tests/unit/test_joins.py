"""
Unit tests for join emulation.

Tests cover:
- Template substitution and null handling
- Retention rules for both join types
- Short-circuiting across several joins
- Object-level helpers
"""

from dataclasses import dataclass
from typing import Optional

import pytest

from tablemap.errors import DefinitionError
from tablemap.query.joins import (
    JoinType,
    RelatedJoin,
    filter_related,
    filter_rows,
    substitute,
    with_related,
    without_related,
)
from tablemap.rows.entity import TableEntity
from tablemap.schema.types import column, partition_key, row_key, table
from tablemap.store.base import TransactionAction, TransactionActionType
from tablemap.store.memory import InMemoryTableStore


@table("Accounts")
@dataclass
class Account:
    tenant: str = partition_key()
    account_id: str = row_key()
    owner: Optional[str] = column("Owner")


@table("Invoices", soft_delete=False)
@dataclass
class Invoice:
    account: str = partition_key()
    invoice_id: str = row_key()
    amount: float = column()


@table("Flags", soft_delete=False)
@dataclass
class Flag:
    account: str = partition_key()
    name: str = row_key()


@table("Drafts", soft_delete=False)
@dataclass
class Draft:
    account: str = partition_key()
    draft_id: Optional[str] = row_key(autogenerate=True)


@table("Loose")
@dataclass
class Unkeyed:
    label: str = column()


class CountingStore(InMemoryTableStore):
    """Memory store that records every query it serves."""

    def __init__(self):
        super().__init__()
        self.probes = []

    def query(self, table_name, filter=None, select=None, top=None):
        self.probes.append((table_name, filter, top))
        return super().query(table_name, filter, select, top)


async def collect(rows):
    return [row async for row in rows]


class TestSubstitute:
    """Tests for template substitution."""

    def test_reserved_names(self):
        """Reserved attributes can be referenced."""
        row = TableEntity("P", "R")
        assert substitute("PartitionKey eq '$(PartitionKey)'", row) == "PartitionKey eq 'P'"

    def test_columns_and_bare_tokens(self):
        """Unquoted tokens take the value's text form."""
        row = TableEntity("P", "R", properties={"Age": 42, "Vip": True})
        assert substitute("Age eq $(Age) and Vip eq $(Vip)", row) == "Age eq 42 and Vip eq true"

    def test_missing_becomes_null(self):
        """Missing and null values become a bare null, quotes included."""
        row = TableEntity("P", "R", properties={"Gone": None})
        assert substitute("Owner eq '$(Owner)'", row) == "Owner eq null"
        assert substitute('Owner eq "$(Gone)"', row) == "Owner eq null"
        assert substitute("Owner eq $(Owner)", row) == "Owner eq null"

    def test_quotes_in_values_escaped(self):
        """Single-quoted values have their quotes doubled."""
        row = TableEntity("P", "R", properties={"Owner": "O'Hara"})
        assert substitute("Owner eq '$(Owner)'", row) == "Owner eq 'O''Hara'"

    def test_mapping_values(self):
        """Plain mappings can supply the values."""
        assert substitute("RowKey eq '$(id)'", {"id": "x1"}) == "RowKey eq 'x1'"

    def test_no_tokens(self):
        """Templates without tokens are unchanged."""
        assert substitute("Age gt 1", TableEntity("P", "R")) == "Age gt 1"


class TestFilterRows:
    """Tests for row-level joins."""

    @pytest.fixture
    async def store(self):
        """Accounts a1..a4; invoices for a1 and a3; a flag on a3."""
        store = CountingStore()
        for name in ("Accounts", "Invoices", "Flags"):
            await store.create_table(name)
        for account in ("a1", "a2", "a3", "a4"):
            await store.submit(
                "Accounts",
                TransactionAction(TransactionActionType.ADD, TableEntity("t", account)),
            )
        for account, invoice in (("a1", "i1"), ("a3", "i2"), ("a3", "i3")):
            await store.submit(
                "Invoices",
                TransactionAction(
                    TransactionActionType.ADD,
                    TableEntity(account, invoice, properties={"amount": 10.0}),
                ),
            )
        await store.submit(
            "Flags",
            TransactionAction(TransactionActionType.ADD, TableEntity("a3", "frozen")),
        )
        store.probes.clear()
        return store

    @pytest.mark.asyncio
    async def test_retain_when_has_any(self, store):
        """Rows with a related row are kept, in order."""
        rows = await collect(
            filter_related(store, store.query("Accounts"), Invoice, "PartitionKey eq '$(RowKey)'")
        )
        assert [r.row_key for r in rows] == ["a1", "a3"]

    @pytest.mark.asyncio
    async def test_retain_when_empty(self, store):
        """Rows without a related row are kept."""
        rows = await collect(
            filter_related(
                store,
                store.query("Accounts"),
                Invoice,
                "PartitionKey eq '$(RowKey)'",
                JoinType.RETAIN_WHEN_EMPTY,
            )
        )
        assert [r.row_key for r in rows] == ["a2", "a4"]

    @pytest.mark.asyncio
    async def test_probes_capped_at_one_row(self, store):
        """Every probe asks for a single row."""
        await collect(
            filter_related(store, store.query("Accounts"), Invoice, "PartitionKey eq '$(RowKey)'")
        )
        invoice_probes = [p for p in store.probes if p[0] == "Invoices"]
        assert len(invoice_probes) == 4
        assert all(top == 1 for _, _, top in invoice_probes)
        assert invoice_probes[0][1] == "PartitionKey eq 'a1'"

    @pytest.mark.asyncio
    async def test_joins_short_circuit(self, store):
        """A rejecting join skips the remaining probes for that row."""
        joins = [
            RelatedJoin(Invoice, JoinType.RETAIN_WHEN_HAS_ANY, "PartitionKey eq '$(RowKey)'"),
            RelatedJoin(Flag, JoinType.RETAIN_WHEN_EMPTY, "PartitionKey eq '$(RowKey)'"),
        ]

        rows = await collect(filter_rows(store, store.query("Accounts"), joins))

        assert [r.row_key for r in rows] == ["a1"]
        flag_probes = [p for p in store.probes if p[0] == "Flags"]
        assert [f for _, f, _ in flag_probes] == ["PartitionKey eq 'a1'", "PartitionKey eq 'a3'"]

    @pytest.mark.asyncio
    async def test_plain_iterables(self, store):
        """Synchronous row lists can be joined too."""
        rows = [TableEntity("t", "a2"), TableEntity("t", "a3")]
        kept = await collect(filter_related(store, rows, Invoice, "PartitionKey eq '$(RowKey)'"))
        assert [r.row_key for r in kept] == ["a3"]

    @pytest.mark.asyncio
    async def test_no_joins(self, store):
        """Without joins every row is kept and nothing is probed."""
        rows = await collect(filter_rows(store, [TableEntity("t", "x")], []))
        assert len(rows) == 1
        assert store.probes == []

    def test_unmappable_related_type(self):
        """Related types must be mappable."""
        with pytest.raises(DefinitionError):
            filter_related(InMemoryTableStore(), [], Unkeyed, "label eq 'x'")


class TestObjectJoins:
    """Tests for object-level helpers."""

    @pytest.fixture
    async def store(self):
        """An invoice for account a1 only."""
        store = InMemoryTableStore()
        await store.create_table("Invoices")
        await store.submit(
            "Invoices",
            TransactionAction(TransactionActionType.ADD, TableEntity("a1", "i1")),
        )
        return store

    @pytest.fixture
    def accounts(self):
        return [Account("t", "a1", "Ann"), Account("t", "a2", None)]

    @pytest.mark.asyncio
    async def test_with_related(self, store, accounts):
        """Member names can be used as tokens."""
        kept = await collect(
            with_related(store, accounts, Invoice, "PartitionKey eq '$(account_id)'")
        )
        assert [a.account_id for a in kept] == ["a1"]

    @pytest.mark.asyncio
    async def test_without_related(self, store, accounts):
        """Objects with no related row are kept."""
        kept = await collect(
            without_related(store, accounts, Invoice, "PartitionKey eq '$(RowKey)'")
        )
        assert [a.account_id for a in kept] == ["a2"]

    def test_invalid_related_type_raises_eagerly(self, accounts):
        """Validation happens before iteration."""
        with pytest.raises(DefinitionError):
            with_related(InMemoryTableStore(), accounts, Unkeyed, "label eq 'x'")

    @pytest.mark.asyncio
    async def test_empty_generated_key_is_null(self):
        """Objects whose row key is not yet generated substitute null."""
        store = CountingStore()
        await store.create_table("Invoices")

        kept = await collect(
            without_related(store, [Draft("a1", None), Draft("a1", "d1")], Invoice, "RowKey eq '$(RowKey)'")
        )

        assert len(kept) == 2
        assert [f for _, f, _ in store.probes] == ["RowKey eq null", "RowKey eq 'd1'"]
