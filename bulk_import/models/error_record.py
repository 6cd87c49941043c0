from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON Lines error ledger.

Supports row=-1 as a sentinel value for file-level records where no
specific row applies (structural failures, aborted sessions).
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: Spreadsheet filename being imported
        sheet: Sheet name within the file
        row: Spreadsheet row number. Use -1 for file-level records
        error_type: Classification in UPPER_SNAKE_CASE (VALIDATION_ERROR, COMMIT_FAILED, ...)
        message: Human readable description
    """
    timestamp: str  # ISO8601 UTC
    file: str
    sheet: str
    row: int
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(file: str, sheet: str, row: int, error_type: str, message: str) -> ErrorRecord:
        """Create a new ErrorRecord stamped with the current UTC time."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            sheet=sheet,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        """Serialize to one JSON line with exactly the dataclass keys."""
        return json.dumps(asdict(self), ensure_ascii=False)
