from __future__ import annotations

import re
from collections.abc import Callable, Collection, Sequence
from typing import Any

from ..models.entity import EntityType, parse_entity_type
from ..models.row_data import RowData
from ..models.validation import ValidationError
from .rules import (
    CUIL_PATTERN,
    CUIT_PATTERN,
    DNI_PATTERN,
    EMAIL_PATTERN,
    EMPRESA_TYPES,
    FIELD_APELLIDO,
    FIELD_CUIT,
    FIELD_DNI,
    FIELD_EMPRESA,
    FIELD_LICENCIA,
    FIELD_NOMBRE,
    FIELD_TIPO,
    PERSONAL_TYPES,
)

"""Coarse per-template checks.

Each row is walked through an ordered list of checks; the first failure
rejects the whole row with a ``Fila N: <message>`` finding attributed to the
column that failed. At most one template finding is produced per row.
In-file duplicates are only reported from their second occurrence on.
"""

__all__ = [
    "check_template",
    "row_error_message",
]

# (row values, seen keys, known companies) -> (field, message) or None
_Check = Callable[[dict[str, Any], set[str], Collection[str]], "tuple[str, str] | None"]


def row_error_message(row_number: int, message: str) -> str:
    return f"Fila {row_number}: {message}"


def _text(values: dict[str, Any], field: str) -> str:
    value = values.get(field)
    return "" if value is None else str(value).strip()


def _yes_no_check(field: str) -> _Check:
    def check(values: dict[str, Any], seen: set[str], companies: Collection[str]) -> tuple[str, str] | None:
        text = _text(values, field).lower()
        if text and text not in ("sí", "si", "no"):
            return field, f'El campo {field} debe ser "Sí" o "No"'
        return None
    return check


def _cliente_checks() -> list[_Check]:
    def required(values, seen, companies):
        if not _text(values, FIELD_NOMBRE):
            return FIELD_NOMBRE, "El nombre es obligatorio"
        if not _text(values, FIELD_CUIT):
            return FIELD_CUIT, "El CUIT es obligatorio"
        return None

    def cuit(values, seen, companies):
        if not CUIT_PATTERN.fullmatch(_text(values, FIELD_CUIT)):
            return FIELD_CUIT, "CUIT con formato inválido"
        return None

    def duplicate(values, seen, companies):
        key = _text(values, FIELD_NOMBRE).lower()
        if key in seen:
            return FIELD_NOMBRE, "Nombre duplicado en el archivo"
        seen.add(key)
        return None

    return [required, cuit, duplicate, _yes_no_check("Activo")]


def _empresa_checks() -> list[_Check]:
    def required(values, seen, companies):
        if not _text(values, FIELD_NOMBRE):
            return FIELD_NOMBRE, "El nombre es obligatorio"
        if not _text(values, FIELD_TIPO):
            return FIELD_TIPO, "El tipo es obligatorio"
        return None

    def tipo(values, seen, companies):
        if _text(values, FIELD_TIPO) not in EMPRESA_TYPES:
            return FIELD_TIPO, 'El tipo debe ser "Propia" o "Subcontratada"'
        return None

    def duplicate(values, seen, companies):
        key = _text(values, FIELD_NOMBRE).lower()
        if key in seen:
            return FIELD_NOMBRE, "Nombre duplicado en el archivo"
        seen.add(key)
        return None

    def formats(values, seen, companies):
        email = _text(values, "Email")
        if email and not EMAIL_PATTERN.fullmatch(email):
            return "Email", "Email con formato inválido"
        cuit = _text(values, "CUIT")
        if cuit and not CUIT_PATTERN.fullmatch(cuit):
            return "CUIT", "CUIT con formato inválido"
        return None

    return [required, tipo, duplicate, formats, _yes_no_check("Activa")]


def _personal_checks() -> list[_Check]:
    required_fields = (
        (FIELD_NOMBRE, "El nombre es obligatorio"),
        (FIELD_APELLIDO, "El apellido es obligatorio"),
        (FIELD_DNI, "El DNI es obligatorio"),
        (FIELD_TIPO, "El tipo es obligatorio"),
        (FIELD_EMPRESA, "La empresa es obligatoria"),
    )

    def dni_digits(values: dict[str, Any]) -> str:
        return re.sub(r"\D", "", _text(values, FIELD_DNI))

    def required(values, seen, companies):
        for field, message in required_fields:
            value = dni_digits(values) if field == FIELD_DNI else _text(values, field)
            if not value:
                return field, message
        return None

    def dni(values, seen, companies):
        if not DNI_PATTERN.fullmatch(dni_digits(values)):
            return FIELD_DNI, "DNI con formato inválido"
        return None

    def duplicate(values, seen, companies):
        key = dni_digits(values)
        if key in seen:
            return FIELD_DNI, "DNI duplicado en el archivo"
        seen.add(key)
        return None

    def tipo(values, seen, companies):
        if _text(values, FIELD_TIPO) not in PERSONAL_TYPES:
            return FIELD_TIPO, "Tipo inválido"
        return None

    def empresa(values, seen, companies):
        # Only enforced when the company list could be loaded
        if companies and _text(values, FIELD_EMPRESA).lower() not in companies:
            return FIELD_EMPRESA, "Empresa no encontrada"
        return None

    def formats(values, seen, companies):
        cuil = _text(values, "CUIL")
        if cuil and not CUIL_PATTERN.fullmatch(cuil):
            return "CUIL", "CUIL con formato inválido"
        email = _text(values, "Email")
        if email and not EMAIL_PATTERN.fullmatch(email):
            return "Email", "Email con formato inválido"
        return None

    def licence(values, seen, companies):
        if _text(values, FIELD_TIPO) == "Conductor" and not _text(values, FIELD_LICENCIA):
            return FIELD_LICENCIA, "Licencia obligatoria para conductores"
        return None

    return [required, dni, duplicate, tipo, empresa, formats, licence]


_CHECKS = {
    EntityType.CLIENTE: _cliente_checks,
    EntityType.EMPRESA: _empresa_checks,
    EntityType.PERSONAL: _personal_checks,
}


def check_template(
    entity: EntityType | str,
    rows: Sequence[RowData],
    companies: Collection[str] = (),
) -> list[ValidationError]:
    """Run the template checks of ``entity`` over ``rows``.

    Args:
        companies: lower-cased names of known companies (personal only).

    Returns:
        One finding per rejected row, in row order.
    """
    entity = parse_entity_type(entity)
    checks = _CHECKS[entity]()
    seen: set[str] = set()
    findings: list[ValidationError] = []
    for row in rows:
        for check in checks:
            failure = check(row.values, seen, companies)
            if failure is None:
                continue
            field, message = failure
            findings.append(
                ValidationError(
                    row=row.row_number,
                    field=field,
                    value=row.get(field),
                    message=row_error_message(row.row_number, message),
                )
            )
            break
    return findings
