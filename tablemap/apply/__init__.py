"""
Apply module for tablemap - bulk writes through the row store.

Invariants:
    - Chunks are submitted one at a time, per partition, in input order
    - Partial failures are reported in BatchResult, never raised
"""

from .batch import BatchResult, BatchWriter, OperationType

__all__ = [
    "BatchResult",
    "BatchWriter",
    "OperationType",
]
