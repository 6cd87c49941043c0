from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from ..models.bulk import BulkError
from ..models.error_record import ErrorRecord
from ..models.row_data import RowData
from ..models.validation import ValidationError

"""Error ledger buffering.

- JSON Lines with a fixed schema (no extra keys)
- One ``errors-YYYYMMDD-HHMMSS.log`` (UTC) per run, created lazily on first flush
- Records are buffered and written on ``flush()``
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
    "ERROR_TYPE_VALIDATION",
    "ERROR_TYPE_TEMPLATE",
    "ERROR_TYPE_STILL_INVALID",
    "ERROR_TYPE_SKIPPED",
    "ERROR_TYPE_COMMIT",
    "ERROR_TYPE_STRUCTURE",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"

ERROR_TYPE_VALIDATION = "VALIDATION_ERROR"
ERROR_TYPE_TEMPLATE = "TEMPLATE_ERROR"
ERROR_TYPE_STILL_INVALID = "STILL_INVALID"
ERROR_TYPE_SKIPPED = "ROW_SKIPPED"
ERROR_TYPE_COMMIT = "COMMIT_FAILED"
ERROR_TYPE_STRUCTURE = "STRUCTURE_ERROR"


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush appends JSON Lines.

    Single writer; the orchestrator owns one buffer per session.
    """

    def __init__(self, logs_dir: Path | None = None) -> None:
        self._logs_dir = logs_dir or LOGS_DIR
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    @property
    def records(self) -> list[ErrorRecord]:
        return list(self._records)

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def add_validation_errors(
        self, file: str, sheet: str, errors: Iterable[ValidationError], error_type: str = ERROR_TYPE_VALIDATION
    ) -> None:
        for e in errors:
            self.append(ErrorRecord.create(file, sheet, e.row, error_type, f"{e.field}: {e.message}"))

    def add_rows(self, file: str, sheet: str, rows: Iterable[RowData], error_type: str, message: str) -> None:
        for row in rows:
            self.append(ErrorRecord.create(file, sheet, row.row_number, error_type, message))

    def add_bulk_errors(self, file: str, sheet: str, errors: Iterable[BulkError]) -> None:
        for e in errors:
            msg = f"{e.error} (reintentos: {e.retry_count})"
            self.append(ErrorRecord.create(file, sheet, e.row, ERROR_TYPE_COMMIT, msg))

    def __len__(self) -> int:
        return len(self._records)

    def flush(self) -> Path | None:
        """Write buffered records. Returns the log path, or None if nothing was ever written."""
        if not self._records:
            return self._file_path
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
