from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

from ..models.entity import EntityType, parse_entity_type
from ..models.row_data import is_blank
from ..models.validation import RuleType, Severity, ValidationError, ValidationRule

"""Per-entity rule catalog.

Rules are plain data plus pure predicates; nothing here performs I/O.
Field names are the column headers of the import templates; a ``(*)``
suffix marks a mandatory column.
"""

__all__ = [
    "RuleCatalog",
    "CUIT_PATTERN",
    "CUIL_PATTERN",
    "DNI_PATTERN",
    "EMAIL_PATTERN",
    "FIELD_NOMBRE",
    "FIELD_APELLIDO",
    "FIELD_CUIT",
    "FIELD_DNI",
    "FIELD_TIPO",
    "FIELD_EMPRESA",
    "FIELD_LICENCIA",
    "PERSONAL_TYPES",
    "EMPRESA_TYPES",
    "EXPIRY_FIELDS",
    "cross_field_checks",
    "format_suggestion",
    "is_date_in_past",
    "parse_display_date",
    "is_yes_no",
]

CUIT_PATTERN = re.compile(r"^(20|23|24|25|26|27|30|33|34)([0-9]{9}|-[0-9]{8}-[0-9]{1})$")
CUIL_PATTERN = re.compile(r"^[0-9]{2}-[0-9]{8}-[0-9]$")
DNI_PATTERN = re.compile(r"^[0-9]{7,8}$")
EMAIL_PATTERN = re.compile(r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$", re.ASCII)

FIELD_NOMBRE = "Nombre (*)"
FIELD_APELLIDO = "Apellido (*)"
FIELD_CUIT = "CUIT (*)"
FIELD_DNI = "DNI (*)"
FIELD_TIPO = "Tipo (*)"
FIELD_EMPRESA = "Empresa (*)"
FIELD_LICENCIA = "Licencia - Número"

PERSONAL_TYPES = ("Conductor", "Administrativo", "Mecánico", "Supervisor", "Otro")
EMPRESA_TYPES = ("Propia", "Subcontratada")
CONDUCTOR = "Conductor"

EXPIRY_FIELDS = (
    "Licencia - Vencimiento",
    "Carnet Prof. - Vencimiento",
    "Eval. Médica - Vencimiento",
    "Psicofísico - Vencimiento",
)

MSG_NOMBRE_REQUIRED = "El nombre es obligatorio"
MSG_NOMBRE_EXISTS = "El nombre ya existe en el sistema"
MSG_CONDUCTOR_LICENCIA = "Los conductores deben tener número de licencia"
MSG_EXPIRED = "La fecha de vencimiento no puede ser del pasado"
MSG_EMAIL_HINT = "Debe incluir @ y un dominio válido"

_DISPLAY_DATE = re.compile(r"^\s*(\d{1,2})/(\d{1,2})/(\d{1,4})\s*$")


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def is_yes_no(value: Any, row: Mapping[str, Any] | None = None, all_rows: Any = None) -> bool:
    """Optional Sí/No column: blank passes."""
    if is_blank(value):
        return True
    return _text(value).lower() in ("sí", "si", "no")


def _empresa_type(value: Any, row: Mapping[str, Any] | None = None, all_rows: Any = None) -> bool:
    return not is_blank(value) and _text(value) in EMPRESA_TYPES


def _personal_type(value: Any, row: Mapping[str, Any] | None = None, all_rows: Any = None) -> bool:
    return not is_blank(value) and _text(value) in PERSONAL_TYPES


def _licence_for_conductor(value: Any, row: Mapping[str, Any], all_rows: Any = None) -> bool:
    if _text(row.get(FIELD_TIPO)) == CONDUCTOR:
        return not is_blank(value)
    return True


def _cliente_rules() -> list[ValidationRule]:
    return [
        ValidationRule(FIELD_NOMBRE, RuleType.REQUIRED, MSG_NOMBRE_REQUIRED),
        ValidationRule(
            FIELD_NOMBRE, RuleType.UNIQUE, MSG_NOMBRE_EXISTS,
            reference_endpoint="/clientes", reference_field="nombre",
        ),
        ValidationRule(FIELD_CUIT, RuleType.REQUIRED, "El CUIT es obligatorio"),
        ValidationRule(
            FIELD_CUIT, RuleType.FORMAT, "CUIT con formato inválido (debe ser XX-XXXXXXXX-X)",
            format_regex=CUIT_PATTERN,
        ),
        ValidationRule("Activo", RuleType.CUSTOM, 'El campo Activo debe ser "Sí" o "No"', validator=is_yes_no),
    ]


def _empresa_rules() -> list[ValidationRule]:
    return [
        ValidationRule(FIELD_NOMBRE, RuleType.REQUIRED, MSG_NOMBRE_REQUIRED),
        ValidationRule(
            FIELD_NOMBRE, RuleType.UNIQUE, MSG_NOMBRE_EXISTS,
            reference_endpoint="/empresas", reference_field="nombre",
        ),
        ValidationRule(FIELD_TIPO, RuleType.REQUIRED, "El tipo es obligatorio"),
        ValidationRule(
            FIELD_TIPO, RuleType.CUSTOM, 'El tipo debe ser "Propia" o "Subcontratada"', validator=_empresa_type
        ),
        ValidationRule("Email", RuleType.FORMAT, "Email con formato inválido", format_regex=EMAIL_PATTERN),
        ValidationRule("CUIT", RuleType.FORMAT, "CUIT con formato inválido", format_regex=CUIT_PATTERN),
    ]


def _personal_rules() -> list[ValidationRule]:
    return [
        ValidationRule(FIELD_NOMBRE, RuleType.REQUIRED, MSG_NOMBRE_REQUIRED),
        ValidationRule(FIELD_APELLIDO, RuleType.REQUIRED, "El apellido es obligatorio"),
        ValidationRule(FIELD_DNI, RuleType.REQUIRED, "El DNI es obligatorio"),
        ValidationRule(FIELD_DNI, RuleType.FORMAT, "DNI con formato inválido (7-8 dígitos)", format_regex=DNI_PATTERN),
        ValidationRule(
            FIELD_DNI, RuleType.UNIQUE, "El DNI ya existe en el sistema",
            reference_endpoint="/personal", reference_field="dni",
        ),
        ValidationRule(FIELD_TIPO, RuleType.REQUIRED, "El tipo es obligatorio"),
        ValidationRule(FIELD_TIPO, RuleType.CUSTOM, "Tipo inválido", validator=_personal_type),
        ValidationRule(FIELD_EMPRESA, RuleType.REQUIRED, "La empresa es obligatoria"),
        ValidationRule(
            FIELD_EMPRESA, RuleType.REFERENCE, "La empresa no existe en el sistema",
            reference_endpoint="/empresas", reference_field="nombre",
        ),
        ValidationRule("CUIL", RuleType.FORMAT, "CUIL con formato inválido", format_regex=CUIL_PATTERN),
        ValidationRule("Email", RuleType.FORMAT, "Email con formato inválido", format_regex=EMAIL_PATTERN),
        ValidationRule(
            FIELD_LICENCIA, RuleType.CUSTOM, "Licencia obligatoria para conductores", validator=_licence_for_conductor
        ),
    ]


_BUILDERS = {
    EntityType.CLIENTE: _cliente_rules,
    EntityType.EMPRESA: _empresa_rules,
    EntityType.PERSONAL: _personal_rules,
}


class RuleCatalog:
    """Holds the rule list of every supported entity.

    Each catalog instance owns its lists, so ``add_custom_rule`` on one
    instance never leaks into another.
    """

    def __init__(self) -> None:
        self._rules: dict[EntityType, list[ValidationRule]] = {
            entity: build() for entity, build in _BUILDERS.items()
        }

    def get_rules(self, entity: EntityType | str) -> list[ValidationRule]:
        """Rules for ``entity`` in evaluation order (empty for unknown entities)."""
        entity = parse_entity_type(entity)
        return list(self._rules.get(entity, []))

    def add_custom_rule(self, entity: EntityType | str, rule: ValidationRule) -> None:
        entity = parse_entity_type(entity)
        self._rules.setdefault(entity, []).append(rule)

    def required_fields(self, entity: EntityType | str) -> list[str]:
        seen: list[str] = []
        for rule in self.get_rules(entity):
            if rule.type is RuleType.REQUIRED and rule.field not in seen:
                seen.append(rule.field)
        return seen


def parse_display_date(text: str) -> date | None:
    """Parse ``DD/MM/YYYY``; None when the text is not such a date."""
    m = _DISPLAY_DATE.match(text)
    if not m:
        return None
    day, month, year = (int(g) for g in m.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def is_date_in_past(value: Any, today: date | None = None) -> bool:
    if isinstance(value, datetime):
        parsed: date | None = value.date()
    elif isinstance(value, date):
        parsed = value
    else:
        parsed = parse_display_date(_text(value))
    if parsed is None:
        return False
    return parsed < (today or date.today())


def cross_field_checks(
    entity: EntityType, row: Mapping[str, Any], row_number: int, today: date | None = None
) -> list[ValidationError]:
    """Record-level checks spanning several columns."""
    findings: list[ValidationError] = []
    if entity is not EntityType.PERSONAL:
        return findings

    licence = row.get(FIELD_LICENCIA)
    if _text(row.get(FIELD_TIPO)) == CONDUCTOR and is_blank(licence):
        findings.append(ValidationError(row_number, FIELD_LICENCIA, licence, MSG_CONDUCTOR_LICENCIA))

    for field in EXPIRY_FIELDS:
        value = row.get(field)
        if not is_blank(value) and is_date_in_past(value, today):
            findings.append(ValidationError(row_number, field, value, MSG_EXPIRED, Severity.WARNING))
    return findings


def format_suggestion(field: str, value: str) -> str | None:
    """Hint attached to format errors."""
    if "CUIT" in field and len(value) >= 8:
        digits = re.sub(r"\D", "", value)
        if len(digits) == 11:
            return f"{digits[:2]}-{digits[2:10]}-{digits[10:]}"
    if "Email" in field and "@" not in value:
        return MSG_EMAIL_HINT
    return None
