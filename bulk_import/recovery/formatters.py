from __future__ import annotations

import re
from datetime import date
from typing import Any

from ..models.recovery import CorrectionResult
from ..models.row_data import is_blank
from ..validation.reference import ReferenceSnapshot

"""Deterministic correction heuristics used by the recovery planner.

Every function is pure and returns a CorrectionResult; ``success=False``
means "no correction", never an exception.
"""

__all__ = [
    "attempt_format_correction",
    "attempt_boolean_correction",
    "attempt_reference_correction",
    "format_tax_id",
    "is_boolean_field",
    "YES_VALUES",
    "NO_VALUES",
]

YES_VALUES = frozenset({"si", "sí", "yes", "y", "true", "1", "activo", "activa", "habilitado", "habilitada"})
NO_VALUES = frozenset({"no", "n", "false", "0", "inactivo", "inactiva", "deshabilitado", "deshabilitada"})
BOOLEAN_FIELDS = ("Activo", "Activa", "Habilitado", "Habilitada")

# (pattern, year-first)
_DATE_FORMATS = (
    (re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$"), False),
    (re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$"), False),
    (re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})$"), True),
    (re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$"), True),
)

_NO_CORRECTION = "No se pudo corregir automáticamente"


def _digits(text: str) -> str:
    return re.sub(r"\D", "", text)


def format_tax_id(digits: str) -> str:
    """11 digits -> ``XX-XXXXXXXX-X``."""
    return f"{digits[:2]}-{digits[2:10]}-{digits[10:]}"


def _tax_id(text: str, label: str) -> CorrectionResult:
    digits = _digits(text)
    if len(digits) != 11:
        return CorrectionResult(False, explanation=_NO_CORRECTION)
    return CorrectionResult(True, format_tax_id(digits), 0.9, f"{label} formateado correctamente")


def _dni(text: str) -> CorrectionResult:
    digits = _digits(text)
    if not 7 <= len(digits) <= 8:
        return CorrectionResult(False, explanation=_NO_CORRECTION)
    return CorrectionResult(True, digits, 0.95, "DNI limpiado de caracteres no numéricos")


def _email(text: str) -> CorrectionResult:
    lowered = text.lower()
    if "@" not in lowered or "." not in lowered:
        return CorrectionResult(False, explanation=_NO_CORRECTION)
    return CorrectionResult(True, lowered, 0.8, "Email convertido a minúsculas")


def _date(text: str) -> CorrectionResult:
    for pattern, year_first in _DATE_FORMATS:
        m = pattern.match(text)
        if not m:
            continue
        first, month, last = m.groups()
        day, year = (last, first) if year_first else (first, last)
        try:
            date(int(year), int(month), int(day))
        except ValueError:
            return CorrectionResult(False, explanation="Fecha inexistente")
        return CorrectionResult(
            True, f"{int(day):02d}/{int(month):02d}/{year}", 0.85, "Fecha reformateada a DD/MM/YYYY"
        )
    return CorrectionResult(False, explanation=_NO_CORRECTION)


def attempt_format_correction(field: str, value: Any) -> CorrectionResult:
    """Normalize the format of identity, email and date fields.

    The field name selects the heuristic; the first matching family wins.
    """
    if is_blank(value):
        return CorrectionResult(False, explanation="Valor vacío")
    text = str(value).strip()

    if "CUIT" in field:
        return _tax_id(text, "CUIT")
    if "CUIL" in field:
        return _tax_id(text, "CUIL")
    if "DNI" in field:
        return _dni(text)
    if "Email" in field or "mail" in field:
        return _email(text)
    if "Fecha" in field or "Vencimiento" in field:
        return _date(text)
    return CorrectionResult(False, explanation=_NO_CORRECTION)


def is_boolean_field(field: str) -> bool:
    return any(name in field for name in BOOLEAN_FIELDS)


def attempt_boolean_correction(value: Any) -> CorrectionResult:
    if is_blank(value):
        return CorrectionResult(False)
    text = str(value).strip().lower()
    if text in YES_VALUES:
        return CorrectionResult(True, "Sí", 0.9, "Valor booleano corregido")
    if text in NO_VALUES:
        return CorrectionResult(True, "No", 0.9, "Valor booleano corregido")
    return CorrectionResult(False)


def attempt_reference_correction(
    value: Any, snapshot: ReferenceSnapshot | None, collection: str = "empresas"
) -> CorrectionResult:
    """Map a dangling reference onto the closest known record name."""
    if snapshot is None or is_blank(value):
        return CorrectionResult(False, explanation="Sin datos de referencia")
    match = snapshot.find_near_match(collection, value)
    if match is None:
        return CorrectionResult(False, explanation="Sin coincidencias similares")
    name, confidence = match
    return CorrectionResult(True, name, confidence, f'"{value}" reemplazado por "{name}"')
