from __future__ import annotations

import pytest

from bulk_import.recovery.formatters import (
    attempt_boolean_correction,
    attempt_format_correction,
    attempt_reference_correction,
    format_tax_id,
    is_boolean_field,
)
from bulk_import.validation.reference import ReferenceSnapshot


def test_cuit_eleven_raw_digits():
    result = attempt_format_correction("CUIT (*)", "20123456789")
    assert result.success
    assert result.value == "20-12345678-9"
    assert result.confidence == 0.9


def test_cuit_correction_is_idempotent():
    result = attempt_format_correction("CUIT (*)", "20-12345678-9")
    assert result.success
    assert result.value == "20-12345678-9"
    assert result.confidence >= 0.9


def test_cuil_with_other_separators():
    result = attempt_format_correction("CUIL", "20.12345678/3")
    assert result.value == "20-12345678-3"


def test_tax_id_wrong_length_not_corrected():
    assert not attempt_format_correction("CUIT (*)", "2012345678").success


@pytest.mark.parametrize("raw, expected", [("12.345.678", "12345678"), ("1 234 567", "1234567")])
def test_dni_stripped(raw, expected):
    result = attempt_format_correction("DNI (*)", raw)
    assert (result.success, result.value, result.confidence) == (True, expected, 0.95)


def test_dni_too_long():
    assert not attempt_format_correction("DNI (*)", "123456789").success


def test_email_lower_cased():
    result = attempt_format_correction("Email", " Ana@Flota.COM ")
    assert (result.value, result.confidence) == ("ana@flota.com", 0.8)
    assert not attempt_format_correction("Email", "ana.flota.com").success


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("5/3/2026", "05/03/2026"),
        ("05-03-2026", "05/03/2026"),
        ("2026/3/5", "05/03/2026"),
        ("2026-03-05", "05/03/2026"),
    ],
)
def test_dates_reformatted(raw, expected):
    result = attempt_format_correction("Licencia - Vencimiento", raw)
    assert (result.success, result.value, result.confidence) == (True, expected, 0.85)


def test_impossible_date_rejected():
    result = attempt_format_correction("Fecha de alta", "31/02/2026")
    assert not result.success


def test_blank_and_unknown_fields():
    assert attempt_format_correction("CUIT (*)", "  ").explanation == "Valor vacío"
    assert not attempt_format_correction("Dirección", "Calle 1").success


def test_format_tax_id():
    assert format_tax_id("30712345678") == "30-71234567-8"


@pytest.mark.parametrize("raw, expected", [("SI", "Sí"), ("si", "Sí"), ("true", "Sí"), ("NO", "No"), ("0", "No")])
def test_boolean_correction(raw, expected):
    result = attempt_boolean_correction(raw)
    assert result.success
    assert result.value == expected
    assert result.confidence == 0.9


def test_boolean_correction_unknown_token():
    assert not attempt_boolean_correction("quizás").success
    assert not attempt_boolean_correction("").success


def test_is_boolean_field():
    assert is_boolean_field("Activo")
    assert is_boolean_field("Activa")
    assert not is_boolean_field("Nombre (*)")


def test_reference_correction():
    snapshot = ReferenceSnapshot.from_records(empresas=[{"nombre": "Transportes del Sur"}])
    result = attempt_reference_correction("Transprtes del Sur", snapshot)
    assert result.success
    assert result.value == "Transportes del Sur"
    assert result.confidence > 0.7
    assert not attempt_reference_correction("Otra cosa", snapshot).success
    assert not attempt_reference_correction("x", None).success
