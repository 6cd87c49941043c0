from __future__ import annotations

import json
from pathlib import Path

from conftest import MockBackend

from bulk_import.cli import __main__ as cli_module
from bulk_import.cli.__main__ import main as cli_main
from bulk_import.services.orchestrator import ImportPipeline

"""End-to-end partial failure: recovery plus a backend conflict.

personal.xlsx holds a clean row, a company typo, a row without DNI and an
unknown Tipo. The backend already has the clean row's DNI, so its POST is
rejected with 409. Expect exit 2, one committed row and a ledger covering
every rejected row.
"""


def test_cli_partial_failure(temp_workdir: Path, write_config: Path, personal_workbook: Path, monkeypatch, capsys):
    backend = MockBackend(
        {
            "empresas": [{"_id": "e1", "nombre": "Transportes del Sur"}],
            "personal": [{"_id": "p0", "DNI (*)": "30000002"}],
        }
    )
    monkeypatch.setattr(cli_module, "ImportPipeline", lambda cfg: ImportPipeline(cfg, store=backend.client()))

    code = cli_main([str(personal_workbook), "--entity", "personal"])

    out = capsys.readouterr().out
    assert code == 2, out
    assert "SUMMARY entity=personal rows=4 valid=2 errors=1 skipped=1 inserted=1 failed=1 " in out

    created = [r for r in backend.collections["personal"] if r["_id"] != "p0"]
    assert [(r["DNI (*)"], r["Empresa (*)"]) for r in created] == [("30000003", "Transportes del Sur")]

    (log_file,) = (temp_workdir / "logs").glob("errors-*.log")
    records = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    by_type: dict[str, set[int]] = {}
    for record in records:
        by_type.setdefault(record["error_type"], set()).add(record["row"])
    assert by_type["COMMIT_FAILED"] == {2}
    assert by_type["ROW_SKIPPED"] == {4}
    assert by_type["STILL_INVALID"] == {5}
    assert by_type["TEMPLATE_ERROR"] == {3, 4, 5}
    commit = next(r for r in records if r["error_type"] == "COMMIT_FAILED")
    assert commit["message"] == "Fila 2: 30000002 ya existe (reintentos: 0)"
    assert commit["file"] == "personal.xlsx"
    assert commit["sheet"] == "personal"
