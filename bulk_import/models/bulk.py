from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

"""Bulk commit models: ledger entries, progress snapshots and results."""

__all__ = [
    "BulkError",
    "BulkProgress",
    "BatchResult",
    "BulkResult",
]


@dataclass(frozen=True)
class BulkError:
    """Terminal failure of one row in the commit ledger.

    ``row`` is the spreadsheet row number of the record; ``retry_count`` is
    the number of retries attempted before giving up.
    """
    row: int
    data: dict[str, Any]
    error: str
    retry_count: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row,
            "data": self.data,
            "error": self.error,
            "retryCount": self.retry_count,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
        }


@dataclass(frozen=True)
class BulkProgress:
    """Immutable progress snapshot emitted after every unit of work.

    Invariants: ``successful + failed == processed`` and ``processed <= total``.
    """
    total: int
    processed: int = 0
    successful: int = 0
    failed: int = 0
    current_batch: int = 0
    total_batches: int = 0
    percentage: int = 0
    estimated_time_remaining: float | None = None  # seconds
    errors: tuple[BulkError, ...] = ()


@dataclass(frozen=True)
class BatchResult:
    batch_number: int  # 1-based
    successful: list[Any]
    failed: list[BulkError]
    duration: float  # seconds


@dataclass(frozen=True)
class BulkResult:
    success: bool
    total: int
    successful: int
    failed: int
    errors: list[BulkError]
    duration: float  # seconds
    throughput: float  # successful rows per second
    cancelled: bool = False
    aborted_reason: str | None = None
