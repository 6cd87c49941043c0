from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .row_data import RowData

"""Validation domain models: rules, findings and aggregated results."""

__all__ = [
    "RuleType",
    "Severity",
    "ValidationRule",
    "ValidationError",
    "ValidationSummary",
    "ValidationResult",
    "RowPredicate",
]

# (value, row, all_rows) -> bool
RowPredicate = Callable[[Any, dict[str, Any], list[dict[str, Any]]], bool]


class RuleType(Enum):
    REQUIRED = "required"
    FORMAT = "format"
    UNIQUE = "unique"
    REFERENCE = "reference"
    CUSTOM = "custom"


class Severity(Enum):
    ERROR = "error"  # blocks commit of the row
    WARNING = "warning"  # reported only


@dataclass(frozen=True)
class ValidationRule:
    """Declarative check applied to one field of every row.

    ``reference_endpoint`` / ``reference_field`` point into the reference
    snapshot (e.g. ``/empresas`` + ``nombre``) for unique and reference rules.
    """
    field: str
    type: RuleType
    message: str
    validator: RowPredicate | None = None
    format_regex: re.Pattern[str] | None = None
    reference_endpoint: str | None = None
    reference_field: str | None = None

    @property
    def reference_collection(self) -> str | None:
        if not self.reference_endpoint:
            return None
        return self.reference_endpoint.strip("/")


@dataclass(frozen=True)
class ValidationError:
    """A single finding attributed to a spreadsheet row and field."""
    row: int  # Spreadsheet row number (header = 1)
    field: str
    value: Any
    message: str
    severity: Severity = Severity.ERROR
    suggestion: str | None = None

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def to_dict(self) -> dict[str, Any]:
        data = {
            "row": self.row,
            "field": self.field,
            "value": self.value,
            "message": self.message,
            "severity": self.severity.value,
        }
        if self.suggestion is not None:
            data["suggestion"] = self.suggestion
        return data


@dataclass(frozen=True)
class ValidationSummary:
    total_rows: int
    valid_rows: int
    error_rows: int  # distinct rows with at least one error-severity finding
    warning_rows: int  # distinct rows with at least one warning


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one sheet.

    ``errors`` holds every error-severity finding, field-level first and
    template-level after; ``template_errors`` repeats the template-level
    subset so callers can tell them apart.
    """
    is_valid: bool
    errors: list[ValidationError]
    warnings: list[ValidationError]
    valid_rows: list[RowData]
    invalid_rows: list[RowData]
    summary: ValidationSummary
    template_errors: list[ValidationError] = field(default_factory=list)

    def errors_for_row(self, row_number: int) -> list[ValidationError]:
        return [e for e in self.errors if e.row == row_number]
