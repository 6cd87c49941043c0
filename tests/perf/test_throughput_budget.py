from __future__ import annotations

import importlib.util
import time
from pathlib import Path

import pytest

from conftest import FakeStore

from bulk_import.models.config_models import ImportConfig, ImportPolicy
from bulk_import.services.orchestrator import ImportPipeline

"""Full-session throughput budget: read -> validate -> recover -> commit.

Uses the synthetic dataset generator from scripts/ and a zero-latency store,
so the budget covers the pipeline itself, not the network.
"""

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "gen_perf_dataset.py"


def _generator():
    spec = importlib.util.spec_from_file_location("gen_perf_dataset", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.mark.perf
@pytest.mark.asyncio
@pytest.mark.parametrize("entity,rows", [("cliente", 3_000), ("personal", 2_000)])
async def test_session_throughput_budget(tmp_path: Path, entity: str, rows: int):
    gen = _generator()
    df = gen.generate_rows(entity, rows, defect_rate=0.1, seed=7)
    source = {entity: [list(df.columns)] + df.astype(object).values.tolist()}

    companies = [{"nombre": f"Empresa {n:06d}"} for n in range(1, 50)]
    store = FakeStore(existing={"empresas": companies})
    config = ImportConfig(
        policy=ImportPolicy(batch_size=100, max_concurrency=4, retry_delay_ms=0, skip_invalid_rows=True),
        logs_dir=tmp_path / "logs",
    )

    start = time.perf_counter()
    result = await ImportPipeline(config, store=store).process_file(source, entity, filename=f"{entity}.xlsx")
    elapsed = time.perf_counter() - start

    summary = result.summary
    assert summary.total_rows == rows
    assert summary.valid_rows + summary.error_rows + summary.skipped_rows == rows
    assert summary.inserted_rows == summary.valid_rows
    assert summary.inserted_rows >= rows * 0.8
    assert elapsed <= 30.0, f"{entity}: {elapsed:.2f}s exceeds 30s budget"
    assert summary.inserted_rows / elapsed >= 100.0

    print(f"\n  {entity}: rows={rows} valid={summary.valid_rows} errors={summary.error_rows} "
          f"skipped={summary.skipped_rows} elapsed={elapsed:.2f}s")
