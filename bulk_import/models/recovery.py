from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .row_data import RowData

"""Recovery domain models: proposed remedies and the outcome of applying them."""

__all__ = [
    "RecoveryActionType",
    "RecoveryAction",
    "CorrectionResult",
    "RecoveryPlan",
    "RecoveryResult",
]


class RecoveryActionType(Enum):
    AUTO_CORRECT = "auto_correct"
    SKIP_ROW = "skip_row"
    MANUAL_FIX = "manual_fix"
    IGNORE = "ignore"
    RETRY = "retry"


@dataclass(frozen=True)
class RecoveryAction:
    """Remedy proposed for one field-level validation error.

    ``confidence`` lies in [0, 1]; only auto corrections above the planner
    threshold are ever applied.
    """
    type: RecoveryActionType
    field: str
    original_value: Any
    reason: str
    confidence: float
    corrected_value: Any = None


@dataclass(frozen=True)
class CorrectionResult:
    """Outcome of one correction heuristic."""
    success: bool
    value: Any = None
    confidence: float = 0.0
    explanation: str = ""


@dataclass(frozen=True)
class RecoveryPlan:
    total_errors: int
    auto_correctable: int
    skippable: int
    manual_fix_required: int
    actions: Mapping[int, tuple[RecoveryAction, ...]]  # row number -> actions
    estimated_success: float  # percentage


@dataclass(frozen=True)
class RecoveryResult:
    """Partition of the input rows after a plan was executed.

    Every input row lands in exactly one of the three buckets.
    """
    success: bool
    recovered_rows: list[RowData]
    skipped_rows: list[RowData]
    still_invalid_rows: list[RowData]
    applied_actions: list[RecoveryAction] = field(default_factory=list)
    report: str = ""
