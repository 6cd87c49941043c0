from __future__ import annotations

from .bulk_operations import (
    BulkOperationError,
    BulkOperations,
    CancellationToken,
    calculate_optimal_batch_size,
    estimate_processing_time,
    format_error_report,
)

__all__ = [
    "BulkOperationError",
    "BulkOperations",
    "CancellationToken",
    "calculate_optimal_batch_size",
    "estimate_processing_time",
    "format_error_report",
]
