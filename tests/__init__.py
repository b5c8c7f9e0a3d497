"""
tablemap test suite.

This package contains:
- unit/: Unit tests (in-memory store, no filesystem)
- integration/: Integration tests (SQLite files, TableContext on both stores)
"""
