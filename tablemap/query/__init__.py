"""
Query module for tablemap - predicates, projections and emulated joins.

This module handles:
- Building filter strings and column lists for mapped types
- Evaluating filter strings against rows (used by the local stores)
- Per-row semi-joins against related tables

Invariants:
    - Filter strings are built in a fixed clause order
    - Join probes run sequentially and preserve input order
"""

from .filters import build_columns, build_filter, quote
from .joins import (
    JoinType,
    RelatedJoin,
    filter_related,
    filter_rows,
    substitute,
    with_related,
    without_related,
)
from .odata import compile_filter, matches

__all__ = [
    # Builders
    "build_filter",
    "build_columns",
    "quote",
    # Evaluation
    "compile_filter",
    "matches",
    # Joins
    "JoinType",
    "RelatedJoin",
    "substitute",
    "filter_rows",
    "filter_related",
    "with_related",
    "without_related",
]
