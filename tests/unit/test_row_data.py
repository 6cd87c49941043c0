from __future__ import annotations

import dataclasses

import pytest

from bulk_import.models.entity import EntityType, UnsupportedEntityError, parse_entity_type
from bulk_import.models.row_data import RowData, is_blank


@pytest.mark.parametrize("value", [None, "", "   ", "\t"])
def test_is_blank(value):
    assert is_blank(value)


@pytest.mark.parametrize("value", ["x", 0, False, " a "])
def test_is_not_blank(value):
    assert not is_blank(value)


def test_with_value_returns_new_row():
    row = RowData(5, {"Nombre (*)": "Acme", "CUIT (*)": "20123456789"})
    updated = row.with_value("CUIT (*)", "20-12345678-9")

    assert updated.row_number == 5
    assert updated.get("CUIT (*)") == "20-12345678-9"
    assert row.get("CUIT (*)") == "20123456789"
    with pytest.raises(dataclasses.FrozenInstanceError):
        row.row_number = 6  # type: ignore[misc]


def test_get_default_and_payload_copy():
    row = RowData(2, {"Nombre (*)": "Acme"})
    assert row.get("Email") is None
    assert row.get("Email", "") == ""
    payload = row.to_payload()
    payload["Nombre (*)"] = "Otro"
    assert row.get("Nombre (*)") == "Acme"


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("cliente", EntityType.CLIENTE),
        ("Clientes", EntityType.CLIENTE),
        (" EMPRESA ", EntityType.EMPRESA),
        ("empresas", EntityType.EMPRESA),
        ("personal", EntityType.PERSONAL),
        (EntityType.PERSONAL, EntityType.PERSONAL),
    ],
)
def test_parse_entity_type(raw, expected):
    assert parse_entity_type(raw) is expected


@pytest.mark.parametrize("raw", ["vehiculo", "", "unknown", EntityType.UNKNOWN])
def test_parse_entity_type_rejects_unsupported(raw):
    with pytest.raises(UnsupportedEntityError):
        parse_entity_type(raw)


def test_entity_endpoints():
    assert EntityType.CLIENTE.endpoint == "/clientes"
    assert EntityType.EMPRESA.collection == "empresas"
    assert EntityType.PERSONAL.endpoint == "/personal"
    with pytest.raises(UnsupportedEntityError):
        EntityType.UNKNOWN.collection
