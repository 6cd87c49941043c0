# Shared pytest fixtures
from __future__ import annotations

import asyncio
import itertools
import json
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pandas as pd
import pytest

from bulk_import.api.client import BackendClient, BackendError
from bulk_import.cli import __main__ as cli_module
from bulk_import.logging.init import reset_logging
from bulk_import.models.config_models import ApiConfig
from bulk_import.services.orchestrator import ImportPipeline

CLIENTE_HEADERS = ["Nombre (*)", "CUIT (*)", "Dirección", "Email", "Activo"]
EMPRESA_HEADERS = ["Nombre (*)", "Tipo (*)", "CUIT", "Email", "Activa"]
PERSONAL_HEADERS = [
    "Nombre (*)",
    "Apellido (*)",
    "DNI (*)",
    "CUIL",
    "Tipo (*)",
    "Empresa (*)",
    "Email",
    "Licencia - Número",
    "Licencia - Vencimiento",
]


class FakeStore:
    """In-memory RecordStore.

    ``fail_plan`` maps a payload ``Nombre (*)`` (or DNI) to a list of errors
    raised on successive create calls; once the list is exhausted the create
    succeeds.
    """

    def __init__(
        self,
        existing: dict[str, list[dict[str, Any]]] | None = None,
        fail_plan: dict[str, list[BackendError]] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.existing = existing or {}
        self.fail_plan = {k: list(v) for k, v in (fail_plan or {}).items()}
        self.delay = delay
        self.created: list[tuple[str, dict[str, Any]]] = []
        self.updated: list[tuple[str, str, dict[str, Any]]] = []
        self.deleted: list[tuple[str, str]] = []
        self.calls: dict[str, int] = {}
        self.in_flight = 0
        self.max_in_flight = 0

    async def list_records(self, endpoint: str) -> list[dict[str, Any]]:
        return list(self.existing.get(endpoint.strip("/"), []))

    async def _call(self, key: str) -> None:
        self.calls[key] = self.calls.get(key, 0) + 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            planned = self.fail_plan.get(key)
            if planned:
                raise planned.pop(0)
        finally:
            self.in_flight -= 1

    async def create(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        key = str(payload.get("Nombre (*)") or payload.get("DNI (*)") or "")
        await self._call(key)
        self.created.append((endpoint, payload))
        return {"_id": f"id-{len(self.created)}", **payload}

    async def update(self, endpoint: str, record_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        await self._call(record_id)
        self.updated.append((endpoint, record_id, payload))
        return payload

    async def delete(self, endpoint: str, record_id: str) -> None:
        await self._call(record_id)
        self.deleted.append((endpoint, record_id))


class MockBackend:
    """REST backend served through ``httpx.MockTransport``.

    Collections live in memory. ``POST`` answers 409 when a record with the
    same DNI (or ``Nombre (*)``) already exists, and ``flaky`` makes the next
    N posts of a given name fail with 503.
    """

    def __init__(self, collections: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self.collections = {name: list(records) for name, records in (collections or {}).items()}
        self.flaky: dict[str, int] = {}
        self.requests: list[tuple[str, str]] = []
        self._ids = itertools.count(1)

    def handler(self, request: httpx.Request) -> httpx.Response:
        collection = request.url.path.removeprefix("/api/").split("/")[0]
        self.requests.append((request.method, request.url.path))
        records = self.collections.setdefault(collection, [])
        if request.method == "GET":
            return httpx.Response(200, json={"data": records})
        if request.method != "POST":
            return httpx.Response(405, json={"message": "Método no permitido"})

        payload = json.loads(request.content)
        key = str(payload.get("DNI (*)") or payload.get("Nombre (*)") or "")
        if self.flaky.get(key, 0) > 0:
            self.flaky[key] -= 1
            return httpx.Response(503, json={"message": "Servicio no disponible"})
        if any(str(r.get("DNI (*)") or r.get("Nombre (*)") or "") == key for r in records):
            return httpx.Response(409, json={"message": f"{key} ya existe"})
        record = {"_id": f"r{next(self._ids)}", **payload}
        records.append(record)
        return httpx.Response(201, json=record)

    def client(self) -> BackendClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(self.handler), base_url="http://backend.test/api")
        return BackendClient(ApiConfig(base_url="http://backend.test/api"), client=http)


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        monkeypatch.delenv("BULK_IMPORT_API_URL", raising=False)
        monkeypatch.delenv("BULK_IMPORT_API_TOKEN", raising=False)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """api:
  base_url: http://backend.test/api
  timeout_seconds: 5
reader:
  max_rows: 1000
policy:
  batch_size: 4
  max_concurrency: 2
  retry_attempts: 2
  retry_delay_ms: 0
  auto_correct: true
  skip_invalid_rows: true
logs_dir: ./logs
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def make_workbook(tmp_path: Path) -> Callable[..., Path]:
    """Write a real .xlsx with pandas/openpyxl: ``make_workbook(name, {sheet: (headers, rows)})``."""

    def build(name: str, sheets: dict[str, tuple[list[str], list[list[Any]]]]) -> Path:
        path = tmp_path / name
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            for sheet_name, (headers, rows) in sheets.items():
                df = pd.DataFrame(rows, columns=headers)
                df.to_excel(writer, sheet_name=sheet_name, index=False)
        return path

    return build


@pytest.fixture()
def fake_store() -> FakeStore:
    return FakeStore(existing={"empresas": [{"_id": "e1", "nombre": "Transportes del Sur"}]})


@pytest.fixture()
def cli_store(monkeypatch, fake_store: FakeStore) -> FakeStore:
    """Route every CLI session to ``fake_store`` instead of the HTTP backend."""
    monkeypatch.setattr(cli_module, "ImportPipeline", lambda cfg: ImportPipeline(cfg, store=fake_store))
    return fake_store


@pytest.fixture()
def cliente_workbook(make_workbook) -> Path:
    rows = [
        ["Acme SA", "20-12345678-9", "Calle 1", "acme@example.com", "Sí"],
        ["Beta SRL", "30-87654321-0", "Calle 2", "beta@example.com", "No"],
    ]
    return make_workbook("clientes.xlsx", {"clientes": (CLIENTE_HEADERS, rows)})


@pytest.fixture()
def personal_workbook(make_workbook) -> Path:
    """Four rows: clean, company typo, blank DNI (skippable), unknown Tipo (manual fix)."""

    def persona(dni: str, tipo: str = "Mecánico", empresa: str = "Transportes del Sur") -> list[str]:
        return ["Juan", "Pérez", dni, "", tipo, empresa, "", "", ""]

    rows = [
        persona("30000002"),
        persona("30000003", empresa="Transprtes del Sur"),
        persona(""),
        persona("30000005", tipo="Chofer"),
    ]
    return make_workbook("personal.xlsx", {"personal": (PERSONAL_HEADERS, rows)})


def transient(message: str = "Servicio no disponible") -> BackendError:
    return BackendError(message, status_code=503)


def permanent(message: str = "Datos inválidos") -> BackendError:
    return BackendError(message, status_code=400)
