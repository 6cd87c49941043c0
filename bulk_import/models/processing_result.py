from __future__ import annotations

import statistics
from dataclasses import dataclass
from typing import Any

from .bulk import BulkResult
from .entity import EntityType
from .excel_file import FileInfo, ProcessedSheet
from .recovery import RecoveryResult
from .validation import ValidationResult

"""Pipeline result models and batch timing statistics."""

__all__ = [
    "ImportSummary",
    "PipelineResult",
    "SheetPreview",
    "BatchStats",
    "BatchStatsAccumulator",
]


@dataclass(frozen=True)
class ImportSummary:
    """Consolidated counts of one import session."""
    total_rows: int
    valid_rows: int  # rows handed to the commit stage
    error_rows: int  # rows rejected (invalid or still invalid after recovery)
    skipped_rows: int
    inserted_rows: int
    failed_rows: int  # rows that failed at commit time
    elapsed_seconds: float = 0.0
    throughput_rows_per_sec: float = 0.0


@dataclass(frozen=True)
class PipelineResult:
    """Everything the orchestrator knows after one session.

    ``recovery_result`` and ``bulk_result`` stay None when that stage did not run.
    """
    file_info: FileInfo
    processed_data: ProcessedSheet
    validation_result: ValidationResult
    summary: ImportSummary
    recovery_result: RecoveryResult | None = None
    bulk_result: BulkResult | None = None
    report_path: str | None = None
    entity: EntityType | None = None


@dataclass(frozen=True)
class SheetPreview:
    """First rows of one sheet plus the entity its headers suggest."""
    sheet_name: str
    entity: EntityType
    headers: list[str]
    total_rows: int
    sample: list[dict[str, Any]]


@dataclass(frozen=True)
class BatchStats:
    total_batches: int
    avg_batch_seconds: float
    p95_batch_seconds: float


class BatchStatsAccumulator:
    """Accumulates per-batch timings of one bulk operation."""

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> BatchStats:
        """Calculate batch statistics (count, mean and 95th percentile)."""
        if not self.batch_times:
            return BatchStats(0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            # 19th of 20 inclusive quantiles
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]

        return BatchStats(total_batches, avg_batch_seconds, p95_batch_seconds)
