from __future__ import annotations

from dataclasses import dataclass, field

from .row_data import RowData

"""Spreadsheet-level domain models produced by the tabular reader."""

__all__ = [
    "FileInfo",
    "ProcessedSheet",
    "StructureValidation",
]


@dataclass(frozen=True)
class FileInfo:
    """Basic facts about a loaded workbook."""
    filename: str
    size: int  # bytes, 0 when unknown
    sheets: list[str]
    total_rows: int  # used rows over all sheets, header rows included


@dataclass(frozen=True)
class ProcessedSheet:
    """Headers and normalized rows of one sheet.

    ``total_rows`` counts every data row under the header; ``processed_rows``
    counts the rows kept after blank-row elision.
    """
    sheet_name: str
    headers: list[str]
    rows: list[RowData]
    total_rows: int
    processed_rows: int
    errors: list[str] = field(default_factory=list)

    def as_dicts(self) -> list[dict]:
        return [r.to_payload() for r in self.rows]


@dataclass(frozen=True)
class StructureValidation:
    valid: bool
    errors: list[str]
