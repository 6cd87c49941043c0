from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from typing import Any

from ..models.config_models import ImportPolicy
from ..models.entity import EntityType, parse_entity_type
from ..models.recovery import (
    RecoveryAction,
    RecoveryActionType,
    RecoveryPlan,
    RecoveryResult,
)
from ..models.row_data import RowData
from ..models.validation import RuleType, Severity, ValidationError, ValidationResult, ValidationRule
from ..validation.reference import ReferenceSnapshot
from ..validation.rules import RuleCatalog
from .formatters import (
    attempt_boolean_correction,
    attempt_format_correction,
    attempt_reference_correction,
    is_boolean_field,
)

"""Recovery planner: turns validation errors into remedies and applies them.

For every erroring field one RecoveryAction is proposed by an ordered chain
of heuristics (first applicable wins):

1. format correction        -> auto_correct
2. boolean token mapping    -> auto_correct
3. reference near-match     -> auto_correct
4. critical / mostly broken -> skip_row
5. optional field           -> ignore
6. otherwise                -> manual_fix

Execution partitions the input rows into recovered, skipped and
still-invalid; each row lands in exactly one bucket.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "RecoveryPlanner",
    "AUTO_CORRECT_THRESHOLD",
    "CRITICAL_FIELDS",
    "REPORT_HEADER",
]

AUTO_CORRECT_THRESHOLD = 0.7
CRITICAL_FIELDS = ("Nombre (*)", "DNI (*)", "CUIT (*)")
REQUIRED_MARKER = "(*)"
_NON_OPTIONAL_TOKENS = ("Nombre", "DNI", "CUIT", "Tipo")
REPORT_HEADER = "=== REPORTE DE RECUPERACIÓN DE ERRORES ==="

# When one field has several errors, the strongest remedy wins.
_PRECEDENCE = {
    RecoveryActionType.IGNORE: 0,
    RecoveryActionType.AUTO_CORRECT: 1,
    RecoveryActionType.RETRY: 2,
    RecoveryActionType.MANUAL_FIX: 3,
    RecoveryActionType.SKIP_ROW: 4,
}

ActionMap = Mapping[int, Sequence[RecoveryAction]]


def _is_optional_field(field: str) -> bool:
    return REQUIRED_MARKER not in field and not any(token in field for token in _NON_OPTIONAL_TOKENS)


class RecoveryPlanner:
    def __init__(
        self,
        policy: ImportPolicy | None = None,
        snapshot: ReferenceSnapshot | None = None,
        catalog: RuleCatalog | None = None,
    ) -> None:
        self.policy = policy or ImportPolicy()
        self.snapshot = snapshot
        self.catalog = catalog or RuleCatalog()

    # ------------------------------------------------------------------ analysis

    def analyze(
        self,
        validation_result: ValidationResult,
        rows: Sequence[RowData],
        entity: EntityType | str | None = None,
    ) -> RecoveryPlan:
        """Propose one action per erroring field of every invalid row."""
        entity_type = parse_entity_type(entity) if entity is not None else None
        by_number = {r.row_number: r for r in rows}
        errors_by_row: dict[int, list[ValidationError]] = {}
        for error in validation_result.errors:
            errors_by_row.setdefault(error.row, []).append(error)

        actions: dict[int, tuple[RecoveryAction, ...]] = {}
        counts = {t: 0 for t in RecoveryActionType}
        for row_number, errors in errors_by_row.items():
            row = by_number.get(row_number)
            values = row.values if row is not None else {}
            row_actions = self._analyze_row(errors, values, entity_type)
            actions[row_number] = row_actions
            for action in row_actions:
                counts[action.type] += 1

        total_rows = len(rows)
        auto = counts[RecoveryActionType.AUTO_CORRECT]
        skippable = counts[RecoveryActionType.SKIP_ROW]
        if total_rows > 0:
            estimated = (total_rows - len(errors_by_row) + auto + skippable) / total_rows * 100
            estimated = round(min(100.0, max(0.0, estimated)), 2)
        else:
            estimated = 0.0

        return RecoveryPlan(
            total_errors=len(validation_result.errors),
            auto_correctable=auto,
            skippable=skippable,
            manual_fix_required=counts[RecoveryActionType.MANUAL_FIX],
            actions=actions,
            estimated_success=estimated,
        )

    def _analyze_row(
        self, errors: list[ValidationError], values: Mapping[str, Any], entity: EntityType | None
    ) -> tuple[RecoveryAction, ...]:
        chosen: dict[str, RecoveryAction] = {}
        for error in errors:
            action = self.suggest_action(error, values, errors, entity)
            current = chosen.get(action.field)
            if current is None or _PRECEDENCE[action.type] > _PRECEDENCE[current.type]:
                chosen[action.field] = action
        return tuple(chosen.values())

    def suggest_action(
        self,
        error: ValidationError,
        values: Mapping[str, Any],
        row_errors: Iterable[ValidationError] = (),
        entity: EntityType | None = None,
    ) -> RecoveryAction:
        field, value = error.field, error.value

        def auto(corrected: Any, reason: str, confidence: float) -> RecoveryAction:
            return RecoveryAction(
                RecoveryActionType.AUTO_CORRECT, field, value, reason, confidence, corrected_value=corrected
            )

        if "formato" in error.message:
            result = attempt_format_correction(field, value)
            if result.success:
                return auto(result.value, f"Formato corregido automáticamente: {result.explanation}", result.confidence)

        if is_boolean_field(field):
            result = attempt_boolean_correction(value)
            if result.success:
                return auto(result.value, "Valor booleano corregido", result.confidence)

        if "no existe" in error.message or "no encontrada" in error.message:
            result = attempt_reference_correction(value, self.snapshot, self._reference_collection(field, entity))
            if result.success:
                return auto(result.value, f"Referencia corregida: {result.explanation}", result.confidence)

        if self._is_skippable(error, values, row_errors):
            return RecoveryAction(
                RecoveryActionType.SKIP_ROW, field, value, "Fila saltada debido a errores críticos", 0.9
            )

        if _is_optional_field(field):
            return RecoveryAction(RecoveryActionType.IGNORE, field, value, "Campo opcional con error ignorado", 0.8)

        return RecoveryAction(RecoveryActionType.MANUAL_FIX, field, value, "Requiere corrección manual", 0.0)

    def _reference_collection(self, field: str, entity: EntityType | None) -> str:
        entities = [entity] if entity is not None else [EntityType.CLIENTE, EntityType.EMPRESA, EntityType.PERSONAL]
        for candidate in entities:
            for rule in self.catalog.get_rules(candidate):
                if rule.type is RuleType.REFERENCE and rule.field == field and rule.reference_collection:
                    return rule.reference_collection
        return "empresas"

    @staticmethod
    def _is_skippable(
        error: ValidationError, values: Mapping[str, Any], row_errors: Iterable[ValidationError]
    ) -> bool:
        if error.field in CRITICAL_FIELDS and error.severity is Severity.ERROR:
            return True
        required = {f for f in values if REQUIRED_MARKER in f}
        if not required:
            return False
        failing = {e.field for e in row_errors if e.field in required} | ({error.field} & required)
        return len(failing) / len(required) > 0.5

    # ----------------------------------------------------------------- execution

    def execute(
        self,
        rows: Sequence[RowData],
        validation_result: ValidationResult,
        custom_actions: ActionMap | None = None,
        entity: EntityType | str | None = None,
    ) -> RecoveryResult:
        """Apply a plan (the analyzed one unless ``custom_actions`` is given).

        Rows without errors are recovered as-is. An invalid row with no
        action at all stays invalid.
        """
        if custom_actions is None:
            custom_actions = self.analyze(validation_result, rows, entity).actions
        format_rules = self._format_rules(entity)
        error_rows = {e.row for e in validation_result.errors}

        recovered: list[RowData] = []
        skipped: list[RowData] = []
        still_invalid: list[RowData] = []
        applied: list[RecoveryAction] = []

        for row in rows:
            actions = custom_actions.get(row.row_number, ())
            if not actions:
                (still_invalid if row.row_number in error_rows else recovered).append(row)
                continue

            processed = row
            row_applied: list[RecoveryAction] = []
            should_skip = False
            unresolved = False
            for action in actions:
                if action.type is RecoveryActionType.AUTO_CORRECT:
                    if not self.policy.auto_correct or action.confidence <= AUTO_CORRECT_THRESHOLD:
                        unresolved = True
                    elif not self._passes_format(format_rules, action.field, action.corrected_value):
                        logger.warning(
                            f"row {row.row_number}: corrected {action.field} still fails its format check"
                        )
                        unresolved = True
                    else:
                        original = row.get(action.field)
                        processed = processed.with_value(action.field, action.corrected_value)
                        if action.original_value is None and original is not None:
                            action = replace(action, original_value=original)
                        row_applied.append(action)
                elif action.type is RecoveryActionType.SKIP_ROW:
                    if self.policy.skip_invalid_rows:
                        should_skip = True
                    else:
                        unresolved = True
                elif action.type is RecoveryActionType.IGNORE:
                    row_applied.append(action)
                else:
                    unresolved = True

            if should_skip:
                skipped.append(row)
                continue
            applied.extend(row_applied)
            (still_invalid if unresolved else recovered).append(processed)

        report = ""
        if self.policy.generate_report:
            report = self.generate_report(applied, len(recovered), len(skipped), len(still_invalid))

        logger.info(
            f"recovery: recovered={len(recovered)} skipped={len(skipped)} "
            f"still_invalid={len(still_invalid)} applied_actions={len(applied)}"
        )
        return RecoveryResult(
            success=not still_invalid,
            recovered_rows=recovered,
            skipped_rows=skipped,
            still_invalid_rows=still_invalid,
            applied_actions=applied,
            report=report,
        )

    def _format_rules(self, entity: EntityType | str | None) -> dict[str, list[ValidationRule]]:
        if entity is None:
            return {}
        rules: dict[str, list[ValidationRule]] = {}
        for rule in self.catalog.get_rules(entity):
            if rule.type is RuleType.FORMAT and rule.format_regex is not None:
                rules.setdefault(rule.field, []).append(rule)
        return rules

    @staticmethod
    def _passes_format(rules: Mapping[str, Sequence[ValidationRule]], field: str, value: Any) -> bool:
        """A corrected value must satisfy the field's own format rules before it is committed."""
        text = "" if value is None else str(value).strip()
        if not text:
            return True
        return all(rule.format_regex.fullmatch(text) for rule in rules.get(field, ()))

    # ------------------------------------------------------------------- helpers

    @staticmethod
    def create_custom_action(
        field: str, corrected_value: Any, reason: str, original_value: Any = None
    ) -> RecoveryAction:
        """Caller-supplied correction; always applied (confidence 1.0)."""
        return RecoveryAction(
            RecoveryActionType.AUTO_CORRECT,
            field,
            original_value,
            f"Corrección manual: {reason}",
            1.0,
            corrected_value=corrected_value,
        )

    @staticmethod
    def validate_corrections(actions: Sequence[RecoveryAction]) -> tuple[bool, list[str]]:
        issues: list[str] = []
        for index, action in enumerate(actions):
            if action.type is RecoveryActionType.AUTO_CORRECT and action.corrected_value is None:
                issues.append(f"Acción {index}: Valor corregido requerido para auto_correct")
            if not 0.0 <= action.confidence <= 1.0:
                issues.append(f"Acción {index}: Confianza debe estar entre 0 y 1")
        return (not issues, issues)

    @staticmethod
    def generate_report(
        actions: Sequence[RecoveryAction], recovered: int, skipped: int, still_invalid: int
    ) -> str:
        lines = [
            REPORT_HEADER,
            "",
            f"Filas recuperadas: {recovered}",
            f"Filas saltadas: {skipped}",
            f"Filas aún inválidas: {still_invalid}",
            "",
            "ACCIONES APLICADAS:",
            "",
        ]
        by_type: dict[RecoveryActionType, list[RecoveryAction]] = {}
        for action in actions:
            by_type.setdefault(action.type, []).append(action)
        for action_type, grouped in by_type.items():
            lines.append(f"{action_type.value.upper()}:")
            for action in grouped:
                lines.append(f"  - {action.field}: {action.reason}")
                if action.corrected_value is not None:
                    lines.append(f"    {action.original_value} → {action.corrected_value}")
            lines.append("")
        return "\n".join(lines)
