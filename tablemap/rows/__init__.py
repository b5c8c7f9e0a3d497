"""
Rows module for tablemap - the generic row record and object conversion.
"""

from .entity import TableEntity, is_valid_key
from .transform import to_object, to_objects, to_row, to_rows

__all__ = [
    "TableEntity",
    "is_valid_key",
    "to_row",
    "to_rows",
    "to_object",
    "to_objects",
]
