from __future__ import annotations

from .formatters import attempt_boolean_correction, attempt_format_correction, attempt_reference_correction
from .planner import RecoveryPlanner

__all__ = [
    "RecoveryPlanner",
    "attempt_boolean_correction",
    "attempt_format_correction",
    "attempt_reference_correction",
]
