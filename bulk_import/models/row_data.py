from __future__ import annotations

from dataclasses import dataclass
from typing import Any

"""RowData model for the bulk import pipeline.

RowData represents a single spreadsheet record after header mapping and
cell normalization. Rows are never mutated: later pipeline stages derive new
instances through ``with_value``.
"""

__all__ = [
    "RowData",
    "is_blank",
]


def is_blank(value: Any) -> bool:
    """True for None, empty strings and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


@dataclass(frozen=True)
class RowData:
    """Logical representation of a single row after normalization.

    ``row_number`` is the spreadsheet row the record came from (row 1 holds
    the headers, so the first data row is 2). It is assigned once by the
    reader and carried unchanged through validation, recovery and commit.
    """
    row_number: int  # Spreadsheet row number (header = 1)
    values: dict[str, Any]  # Header name -> normalized cell value

    def get(self, field: str, default: Any = None) -> Any:
        return self.values.get(field, default)

    def with_value(self, field: str, value: Any) -> RowData:
        """Return a copy of this row with ``field`` rewritten."""
        values = dict(self.values)
        values[field] = value
        return RowData(row_number=self.row_number, values=values)

    def to_payload(self) -> dict[str, Any]:
        """Plain dict copy suitable for sending to the backend."""
        return dict(self.values)
