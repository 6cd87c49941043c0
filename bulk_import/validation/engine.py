from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from datetime import date
from typing import Any

from ..api.client import RecordStore
from ..models.entity import EntityType, parse_entity_type
from ..models.row_data import RowData, is_blank
from ..models.validation import (
    RuleType,
    ValidationError,
    ValidationResult,
    ValidationRule,
    ValidationSummary,
)
from .reference import ReferenceSnapshot
from .rules import RuleCatalog, cross_field_checks, format_suggestion
from .templates import check_template

"""Validation engine: applies the rule catalog to every row of a sheet.

Per row, rules run in catalog order followed by the entity's cross-field
checks. A row is invalid iff it has at least one error-severity finding;
warnings never invalidate. ``validate_with_template`` additionally runs the
coarse template checks and merges both result sets.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "ValidationEngine",
    "DUPLICATE_IN_FILE_SUFFIX",
]

DUPLICATE_IN_FILE_SUFFIX = " (duplicado en el archivo)"


def _key(value: Any) -> str:
    return str(value).strip().lower()


class ValidationEngine:
    """Stateless apart from the catalog and the reference snapshot.

    The snapshot is read-only for the whole session; call
    ``load_reference_data`` once before validating a new import.
    """

    def __init__(
        self,
        catalog: RuleCatalog | None = None,
        snapshot: ReferenceSnapshot | None = None,
        today: date | None = None,
    ) -> None:
        self.catalog = catalog or RuleCatalog()
        self.snapshot = snapshot or ReferenceSnapshot()
        self._today = today

    async def load_reference_data(self, client: RecordStore) -> ReferenceSnapshot:
        self.snapshot = await ReferenceSnapshot.load(client)
        return self.snapshot

    def validate_rows(self, entity: EntityType | str, rows: Sequence[RowData]) -> ValidationResult:
        """Field-level and cross-field validation only."""
        entity = parse_entity_type(entity)
        rules = self.catalog.get_rules(entity)
        all_values = [r.values for r in rows]
        in_file_counts = self._count_unique_values(rules, rows)

        errors: list[ValidationError] = []
        warnings: list[ValidationError] = []
        for row in rows:
            for rule in rules:
                finding = self._apply_rule(rule, row, all_values, in_file_counts)
                if finding is not None:
                    (errors if finding.is_error else warnings).append(finding)
            for finding in cross_field_checks(entity, row.values, row.row_number, self._today):
                (errors if finding.is_error else warnings).append(finding)

        return self._build_result(rows, errors, warnings, [])

    def validate_with_template(self, entity: EntityType | str, rows: Sequence[RowData]) -> ValidationResult:
        """Template checks plus engine rules, merged into one result."""
        entity = parse_entity_type(entity)
        companies: list[str] = []
        if entity is EntityType.PERSONAL:
            companies = self.snapshot.reference_keys("empresas")
        template_errors = check_template(entity, rows, companies)
        engine_result = self.validate_rows(entity, rows)
        result = self._build_result(
            rows,
            engine_result.errors + template_errors,
            engine_result.warnings,
            template_errors,
        )
        logger.debug(
            f"validated {entity.value}: rows={result.summary.total_rows} "
            f"valid={result.summary.valid_rows} errors={len(result.errors)} "
            f"template_errors={len(template_errors)} warnings={len(result.warnings)}"
        )
        return result

    def _count_unique_values(
        self, rules: list[ValidationRule], rows: Sequence[RowData]
    ) -> dict[str, Counter[str]]:
        counts: dict[str, Counter[str]] = {}
        for rule in rules:
            if rule.type is not RuleType.UNIQUE or rule.field in counts:
                continue
            counter: Counter[str] = Counter()
            for row in rows:
                value = row.get(rule.field)
                if not is_blank(value):
                    counter[_key(value)] += 1
            counts[rule.field] = counter
        return counts

    def _apply_rule(
        self,
        rule: ValidationRule,
        row: RowData,
        all_values: list[dict[str, Any]],
        in_file_counts: dict[str, Counter[str]],
    ) -> ValidationError | None:
        value = row.get(rule.field)

        def finding(message: str = rule.message, suggestion: str | None = None) -> ValidationError:
            return ValidationError(row.row_number, rule.field, value, message, suggestion=suggestion)

        if rule.type is RuleType.REQUIRED:
            return finding() if is_blank(value) else None

        if rule.type is RuleType.FORMAT:
            if is_blank(value) or rule.format_regex is None:
                return None
            text = str(value).strip()
            if rule.format_regex.fullmatch(text):
                return None
            return finding(suggestion=format_suggestion(rule.field, text))

        if rule.type is RuleType.UNIQUE:
            if is_blank(value):
                return None
            # The row's own occurrence is part of the count
            if in_file_counts.get(rule.field, Counter())[_key(value)] > 1:
                return finding(f"{rule.message}{DUPLICATE_IN_FILE_SUFFIX}")
            if rule.reference_collection and rule.reference_field:
                if self.snapshot.contains_value(rule.reference_collection, rule.reference_field, value):
                    return finding()
            return None

        if rule.type is RuleType.REFERENCE:
            if is_blank(value) or not rule.reference_collection:
                return None
            ref_map = self.snapshot.reference_map(rule.reference_collection)
            if ref_map is None or _key(value) in ref_map:
                return None
            suggestion_key = self.snapshot.find_containment_match(rule.reference_collection, value)
            suggestion = (
                self.snapshot.display_name(rule.reference_collection, suggestion_key)
                if suggestion_key is not None else None
            )
            return finding(suggestion=suggestion)

        if rule.type is RuleType.CUSTOM:
            if rule.validator is None or rule.validator(value, row.values, all_values):
                return None
            return finding()

        return None

    @staticmethod
    def _build_result(
        rows: Sequence[RowData],
        errors: list[ValidationError],
        warnings: list[ValidationError],
        template_errors: list[ValidationError],
    ) -> ValidationResult:
        error_rows = {e.row for e in errors}
        warning_rows = {w.row for w in warnings}
        valid = [r for r in rows if r.row_number not in error_rows]
        invalid = [r for r in rows if r.row_number in error_rows]
        summary = ValidationSummary(
            total_rows=len(rows),
            valid_rows=len(valid),
            error_rows=len(invalid),
            warning_rows=len({r.row_number for r in rows} & warning_rows),
        )
        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            valid_rows=valid,
            invalid_rows=invalid,
            summary=summary,
            template_errors=template_errors,
        )
