from __future__ import annotations

import asyncio

import pytest

from conftest import FakeStore, permanent, transient

from bulk_import.commit.bulk_operations import (
    ERROR_REPORT_HEADER,
    BulkOperations,
    CancellationToken,
    calculate_optimal_batch_size,
    estimate_processing_time,
    format_error_report,
)
from bulk_import.models.bulk import BulkError, BulkProgress
from bulk_import.models.config_models import ImportPolicy
from bulk_import.models.row_data import RowData


def _rows(n: int) -> list[RowData]:
    # spreadsheet numbering: header is row 1
    return [RowData(i + 2, {"Nombre (*)": f"Cliente {i + 2}", "CUIT (*)": "20-12345678-9"}) for i in range(n)]


def _policy(**kwargs) -> ImportPolicy:
    defaults = {"batch_size": 4, "max_concurrency": 2, "retry_attempts": 2, "retry_delay_ms": 0}
    defaults.update(kwargs)
    return ImportPolicy(**defaults)


@pytest.mark.asyncio
async def test_ten_rows_make_three_batches():
    store = FakeStore()
    snapshots: list[BulkProgress] = []
    batch_sizes: list[int] = []
    ops = BulkOperations(
        store,
        _policy(progress_callback=snapshots.append),
        metrics_callback=lambda m: batch_sizes.append(m.batch_size),
    )

    result = await ops.bulk_insert("cliente", _rows(10))

    assert result.success
    assert (result.total, result.successful, result.failed) == (10, 10, 0)
    assert sorted(batch_sizes) == [2, 4, 4]
    assert len(snapshots) == 3
    assert {s.total_batches for s in snapshots} == {3}
    assert snapshots[-1].processed == 10
    assert snapshots[-1].percentage == 100
    assert all(endpoint == "/clientes" for endpoint, _ in store.created)
    assert ops.get_performance_stats().batch_stats.total_batches == 3


@pytest.mark.asyncio
async def test_transient_failures_then_success_is_not_an_error():
    store = FakeStore(fail_plan={"Cliente 3": [transient(), transient()]})
    result = await BulkOperations(store, _policy(retry_attempts=3)).bulk_insert("cliente", _rows(5))

    assert result.success
    assert result.successful == 5
    assert result.errors == []
    assert store.calls["Cliente 3"] == 3


@pytest.mark.asyncio
async def test_retries_stop_after_configured_attempts():
    store = FakeStore(fail_plan={"Cliente 3": [transient() for _ in range(5)]})
    result = await BulkOperations(store, _policy(retry_attempts=2)).bulk_insert("cliente", _rows(3))

    assert store.calls["Cliente 3"] == 3
    assert result.successful == 2
    (error,) = result.errors
    assert error.row == 3
    assert error.retry_count == 2
    assert error.error == "Fila 3: Servicio no disponible"
    assert error.data["Nombre (*)"] == "Cliente 3"
    assert not result.success


@pytest.mark.asyncio
async def test_permanent_error_is_not_retried():
    store = FakeStore(fail_plan={"Cliente 2": [permanent("CUIT duplicado")]})
    result = await BulkOperations(store, _policy(retry_attempts=3)).bulk_insert("cliente", _rows(2))

    assert store.calls["Cliente 2"] == 1
    assert [(e.row, e.retry_count, e.error) for e in result.errors] == [(2, 0, "Fila 2: CUIT duplicado")]


@pytest.mark.asyncio
async def test_error_ledger_sorted_by_row():
    plan = {f"Cliente {n}": [permanent()] for n in (11, 3, 7)}
    result = await BulkOperations(FakeStore(fail_plan=plan), _policy(batch_size=2, max_concurrency=3)).bulk_insert(
        "cliente", _rows(12)
    )
    assert [e.row for e in result.errors] == [3, 7, 11]
    assert result.successful + result.failed == 12


@pytest.mark.asyncio
async def test_progress_snapshots_are_monotonic_and_consistent():
    store = FakeStore(fail_plan={"Cliente 5": [permanent()]}, delay=0.001)
    snapshots: list[BulkProgress] = []
    await BulkOperations(store, _policy(batch_size=3, max_concurrency=3, progress_callback=snapshots.append)).bulk_insert(
        "cliente", _rows(20)
    )

    processed = [s.processed for s in snapshots]
    assert processed == sorted(processed)
    assert len(set(processed)) == len(processed)
    for s in snapshots:
        assert s.successful + s.failed == s.processed
        assert s.processed <= s.total
    assert processed[-1] == 20
    assert snapshots[-1].failed == 1
    assert len(snapshots[-1].errors) == 1


@pytest.mark.asyncio
async def test_concurrency_never_exceeds_limit():
    store = FakeStore(delay=0.005)
    await BulkOperations(store, _policy(batch_size=2, max_concurrency=3)).bulk_insert("cliente", _rows(20))
    assert 1 <= store.max_in_flight <= 3


@pytest.mark.asyncio
async def test_rows_inside_a_batch_commit_in_order():
    store = FakeStore()
    await BulkOperations(store, _policy(batch_size=10, max_concurrency=1)).bulk_insert("cliente", _rows(6))
    assert [p["Nombre (*)"] for _, p in store.created] == [f"Cliente {n}" for n in range(2, 8)]


@pytest.mark.asyncio
async def test_progress_stream_ends_with_sentinel():
    stream: asyncio.Queue[BulkProgress | None] = asyncio.Queue()
    await BulkOperations(FakeStore(), _policy(), progress_stream=stream).bulk_insert("cliente", _rows(10))

    items = []
    while not stream.empty():
        items.append(stream.get_nowait())
    assert items[-1] is None
    assert [type(i) for i in items[:-1]] == [BulkProgress] * 3


@pytest.mark.asyncio
async def test_empty_input():
    stream: asyncio.Queue[BulkProgress | None] = asyncio.Queue()
    result = await BulkOperations(FakeStore(), _policy(), progress_stream=stream).bulk_insert("cliente", [])
    assert result.success
    assert result.total == 0
    assert stream.get_nowait() is None


@pytest.mark.asyncio
async def test_cancel_stops_before_next_batch():
    store = FakeStore()
    ops: BulkOperations

    def cancel_after_first(progress: BulkProgress) -> None:
        ops.cancel()

    ops = BulkOperations(store, _policy(batch_size=2, max_concurrency=1, progress_callback=cancel_after_first))
    result = await ops.bulk_insert("cliente", _rows(6))

    assert result.cancelled
    assert not result.success
    assert result.successful == 2
    assert len(store.created) == 2


@pytest.mark.asyncio
async def test_cancellation_does_not_carry_over_to_next_operation():
    store = FakeStore()
    ops = BulkOperations(store, _policy())
    ops.cancel()
    result = await ops.bulk_insert("cliente", _rows(3))
    assert not result.cancelled
    assert result.successful == 3


@pytest.mark.asyncio
async def test_stop_on_first_error_when_continue_disabled():
    store = FakeStore(fail_plan={"Cliente 4": [permanent()]})
    ops = BulkOperations(store, _policy(batch_size=2, max_concurrency=1, continue_on_error=False))
    result = await ops.bulk_insert("cliente", _rows(6))

    assert not result.success
    assert result.aborted_reason == "Error en lote 2, fila 4: Fila 4: Datos inválidos"
    assert result.successful == 2
    assert [e.row for e in result.errors] == [4]
    assert "Cliente 5" not in store.calls


@pytest.mark.asyncio
async def test_plain_dicts_are_numbered_by_position():
    store = FakeStore(fail_plan={"b": [permanent()]})
    rows = [{"Nombre (*)": "a"}, {"Nombre (*)": "b"}]
    result = await BulkOperations(store, _policy()).bulk_insert("empresa", rows)
    assert [e.row for e in result.errors] == [2]
    assert store.created == [("/empresas", {"Nombre (*)": "a"})]


@pytest.mark.asyncio
async def test_bulk_update_uses_record_id():
    store = FakeStore()
    rows = [{"_id": "p1", "Nombre (*)": "Ana"}, {"Nombre (*)": "Sin id"}, {"id": "p3", "Nombre (*)": "Luis"}]
    snapshots: list[BulkProgress] = []
    result = await BulkOperations(store, _policy(progress_callback=snapshots.append)).bulk_update("personal", rows)

    assert [rid for _, rid, _ in store.updated] == ["p1", "p3"]
    assert result.successful == 2
    assert [(e.row, e.error, e.retry_count) for e in result.errors] == [(2, "Fila 2: Registro sin id", 0)]
    assert [s.processed for s in snapshots] == [1, 2, 3]


@pytest.mark.asyncio
async def test_bulk_delete():
    store = FakeStore(fail_plan={"x2": [transient(), transient(), transient()]})
    result = await BulkOperations(store, _policy(retry_attempts=1)).bulk_delete("cliente", ["x1", "x2"])

    assert store.deleted == [("/clientes", "x1")]
    assert store.calls["x2"] == 2
    assert result.failed == 1


def test_estimate_processing_time():
    estimate = estimate_processing_time(1000, avg_item_ms=100)
    assert (estimate.minutes, estimate.seconds, estimate.formatted) == (1, 40, "1m 40s")
    assert estimate_processing_time(300).formatted == "30s"


@pytest.mark.parametrize(
    "count,complexity,expected",
    [(0, "medium", 1), (5, "medium", 5), (50, "low", 20), (500, "low", 100), (500, "high", 25),
     (20000, "low", 200), (20000, "high", 100)],
)
def test_calculate_optimal_batch_size(count, complexity, expected):
    assert calculate_optimal_batch_size(count, complexity) == expected


def test_calculate_optimal_batch_size_rejects_unknown_complexity():
    with pytest.raises(ValueError):
        calculate_optimal_batch_size(100, "extreme")


def test_optimize_batch_size():
    ops = BulkOperations(FakeStore(), _policy(batch_size=50))
    assert ops.optimize_batch_size([(1.0, 5)] * 2) == 50
    assert ops.optimize_batch_size([(1.0, 5)] * 3) == 25
    assert ops.optimize_batch_size([(1.0, 500)] * 3) == 100
    assert ops.optimize_batch_size([(1.0, 50)] * 3) == 50


def test_format_error_report():
    assert format_error_report([]) == "No hay errores que reportar."
    report = format_error_report([BulkError(7, {"Nombre (*)": "Ñandú SA"}, "Fila 7: CUIT duplicado", 2)])
    lines = report.splitlines()
    assert lines[0] == ERROR_REPORT_HEADER
    assert "Total de errores: 1" in lines
    assert "1. Fila 7:" in lines
    assert "   Reintentos: 2" in lines
    assert '   Datos: {"Nombre (*)": "Ñandú SA"}...' in lines


def test_performance_stats_before_any_operation():
    stats = BulkOperations(FakeStore(), _policy()).get_performance_stats()
    assert stats.items_per_second == 0.0
    assert stats.batch_stats.total_batches == 0


@pytest.mark.asyncio
async def test_unexpected_store_error_keeps_committed_rows():
    store = FakeStore(fail_plan={"Cliente 4": [RuntimeError("socket closed")]})
    snapshots: list[BulkProgress] = []
    ops = BulkOperations(store, _policy(max_concurrency=1, progress_callback=snapshots.append))

    result = await ops.bulk_insert("cliente", _rows(8))

    # rows 2 and 3 reached the backend before row 4 blew up
    assert [p["Nombre (*)"] for _, p in store.created] == ["Cliente 2", "Cliente 3"]
    assert result.successful == len(store.created) == 2
    assert result.failed == 1
    assert result.errors[0].row == 4
    assert "socket closed" in result.errors[0].error
    assert not result.success
    assert not result.cancelled
    assert result.aborted_reason.startswith("Error inesperado en lote 1, fila 4")

    assert len(snapshots) == 1
    last = snapshots[-1]
    assert (last.processed, last.successful, last.failed) == (3, 2, 1)
    assert last.successful + last.failed == last.processed
    assert ops.progress.processed == 3


@pytest.mark.asyncio
async def test_unexpected_error_in_item_operation_is_reported():
    store = FakeStore(fail_plan={"p2": [RuntimeError("boom")]})
    rows = [{"id": "p1"}, {"id": "p2"}, {"id": "p3"}]
    result = await BulkOperations(store, _policy()).bulk_update("personal", rows)

    assert [rid for _, rid, _ in store.updated] == ["p1"]
    assert (result.successful, result.failed) == (1, 1)
    assert result.errors[0].row == 2
    assert result.aborted_reason == "Error inesperado en fila 2: boom"


@pytest.mark.asyncio
async def test_bulk_update_accepts_falsy_ids():
    store = FakeStore()
    rows = [{"id": 0, "Nombre (*)": "Cero"}, {"id": None, "_id": "p9", "Nombre (*)": "Nueve"}, {"id": ""}]
    result = await BulkOperations(store, _policy()).bulk_update("personal", rows)

    assert [rid for _, rid, _ in store.updated] == ["0", "p9", ""]
    assert result.success


@pytest.mark.asyncio
async def test_shared_token_cancelled_before_start_commits_nothing():
    token = CancellationToken()
    token.cancel()
    store = FakeStore()
    result = await BulkOperations(store, _policy(), cancellation=token).bulk_insert("cliente", _rows(5))

    assert result.cancelled
    assert result.successful == 0
    assert store.created == []


def test_cancel_reaches_shared_token():
    token = CancellationToken()
    BulkOperations(FakeStore(), _policy(), cancellation=token).cancel()
    assert token.cancelled
