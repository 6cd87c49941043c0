from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from ..api.client import BackendError, RecordStore
from ..models.bulk import BatchResult, BulkError, BulkProgress, BulkResult
from ..models.config_models import ImportPolicy
from ..models.entity import EntityType, parse_entity_type
from ..models.processing_result import BatchStats, BatchStatsAccumulator
from ..models.row_data import RowData

"""Bulk commit engine.

bulk_insert:
- rows are split into fixed-size batches and queued FIFO
- ``max_concurrency`` workers each take the oldest pending batch, so no more
  than that many batches run their row loop at the same time
- inside a batch rows commit one at a time in input order
- a failed row is retried ``retry_attempts`` times, waiting
  ``retry_delay_ms * attempt`` before each retry; permanent (non-transient)
  backend errors are not retried
- an immutable BulkProgress snapshot is emitted after every batch
- the result is built only after every worker has settled

bulk_update / bulk_delete work item by item without batching.

Cancellation is cooperative: ``cancel()`` is observed before each batch and
before each row; in-flight backend calls are never interrupted. A token passed
in by the caller is shared with it and survives across operations.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "BulkOperations",
    "BulkOperationError",
    "CancellationToken",
    "BatchMetrics",
    "PerformanceStats",
    "TimeEstimate",
    "estimate_processing_time",
    "calculate_optimal_batch_size",
    "format_error_report",
    "ERROR_REPORT_HEADER",
]

ERROR_REPORT_HEADER = "=== REPORTE DE ERRORES DE OPERACIÓN MASIVA ==="

# (row number, payload)
_Item = tuple[int, dict[str, Any]]


class BulkOperationError(Exception):
    """A batch was aborted: a row failed with ``continue_on_error`` off, or the
    store raised something other than BackendError. ``batch`` holds the rows
    processed up to that point."""

    def __init__(self, message: str, batch: BatchResult | None = None) -> None:
        super().__init__(message)
        self.batch = batch


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass(frozen=True)
class BatchMetrics:
    """Timing of one committed batch."""
    batch_number: int
    batch_size: int  # rows attempted in this batch
    elapsed_seconds: float
    start_time: float  # time.time()
    end_time: float  # time.time()


@dataclass(frozen=True)
class PerformanceStats:
    avg_batch_seconds: float
    items_per_second: float
    error_rate: float  # percentage of total
    batch_stats: BatchStats


@dataclass(frozen=True)
class TimeEstimate:
    minutes: int
    seconds: int
    formatted: str


class _ProgressState:
    """Single writer of the progress counters of one operation."""

    def __init__(self, total: int, total_batches: int, started: float) -> None:
        self.total = total
        self.total_batches = total_batches
        self.started = started
        self.processed = 0
        self.successful = 0
        self.failed = 0
        self.current_batch = 0
        self.errors: list[BulkError] = []

    def record(self, successful: int, failed: Sequence[BulkError], current_batch: int) -> BulkProgress:
        self.successful += successful
        self.failed += len(failed)
        self.processed += successful + len(failed)
        self.errors.extend(failed)
        self.current_batch = current_batch
        return self.snapshot()

    def snapshot(self) -> BulkProgress:
        percentage = int(self.processed * 100 / self.total + 0.5) if self.total else 100
        eta = None
        elapsed = time.perf_counter() - self.started
        if self.processed > 0 and elapsed > 0:
            rate = self.processed / elapsed
            eta = round((self.total - self.processed) / rate, 3)
        return BulkProgress(
            total=self.total,
            processed=self.processed,
            successful=self.successful,
            failed=self.failed,
            current_batch=self.current_batch,
            total_batches=self.total_batches,
            percentage=percentage,
            estimated_time_remaining=eta,
            errors=tuple(self.errors),
        )


def _numbered(rows: Sequence[RowData | dict[str, Any]]) -> list[_Item]:
    """RowData keeps its spreadsheet row number; plain dicts are numbered by position from 1."""
    items: list[_Item] = []
    for index, row in enumerate(rows):
        if isinstance(row, RowData):
            items.append((row.row_number, row.to_payload()))
        else:
            items.append((index + 1, dict(row)))
    return items


class BulkOperations:
    """Commits rows against one RecordStore under an ImportPolicy.

    One instance drives one operation at a time. Progress snapshots go to
    ``policy.progress_callback`` and, when given, to ``progress_stream``
    (terminated by a ``None`` once the operation finishes).
    """

    def __init__(
        self,
        store: RecordStore,
        policy: ImportPolicy | None = None,
        progress_stream: asyncio.Queue[BulkProgress | None] | None = None,
        metrics_callback: Callable[[BatchMetrics], None] | None = None,
        cancellation: CancellationToken | None = None,
    ) -> None:
        self.store = store
        self.policy = policy or ImportPolicy()
        self.progress_stream = progress_stream
        self.metrics_callback = metrics_callback
        # A caller-owned token is never replaced between operations.
        self._shared_token = cancellation
        self._token = cancellation or CancellationToken()
        self._state: _ProgressState | None = None
        self._batch_stats = BatchStatsAccumulator()
        self._duration = 0.0

    # ------------------------------------------------------------------ public

    def cancel(self) -> None:
        """Stop taking new batches and rows; in-flight calls finish normally."""
        self._token.cancel()
        logger.warning("bulk operation cancellation requested")

    @property
    def progress(self) -> BulkProgress | None:
        return self._state.snapshot() if self._state else None

    async def bulk_insert(self, entity: EntityType | str, rows: Sequence[RowData | dict[str, Any]]) -> BulkResult:
        endpoint = parse_entity_type(entity).endpoint
        items = _numbered(rows)
        size = max(1, self.policy.batch_size)
        batches = [items[i:i + size] for i in range(0, len(items), size)]

        started = self._begin(len(items), len(batches))
        queue: asyncio.Queue[tuple[int, list[_Item]]] = asyncio.Queue()
        for number, batch in enumerate(batches, start=1):
            queue.put_nowait((number, batch))

        results: list[BatchResult] = []
        aborted: list[str] = []

        async def create(payload: dict[str, Any]) -> Any:
            return await self.store.create(endpoint, payload)

        async def worker() -> None:
            while not aborted and not self._token.cancelled:
                try:
                    number, batch = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    result = await self._process_batch(number, batch, create)
                except BulkOperationError as e:
                    aborted.append(str(e))
                    if e.batch is not None:
                        results.append(e.batch)
                        self._emit(self._state.record(len(e.batch.successful), e.batch.failed, number))
                    return
                results.append(result)
                self._emit(self._state.record(len(result.successful), result.failed, number))

        n_workers = min(max(1, self.policy.max_concurrency), len(batches))
        workers = [asyncio.create_task(worker()) for _ in range(n_workers)]
        outcomes = await asyncio.gather(*workers, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                logger.error(f"bulk insert worker crashed: {outcome}")
                aborted.append(str(outcome))

        successful = sum(len(r.successful) for r in results)
        errors = sorted((e for r in results for e in r.failed), key=lambda e: e.row)
        return self._finish(started, len(items), successful, errors, aborted)

    async def bulk_update(self, entity: EntityType | str, rows: Sequence[RowData | dict[str, Any]]) -> BulkResult:
        """``PUT /<collection>/<id>`` per item, id taken from ``id`` or ``_id``."""
        endpoint = parse_entity_type(entity).endpoint

        async def update(payload: dict[str, Any]) -> Any:
            record_id = payload.get("id")
            if record_id is None:
                record_id = payload.get("_id")
            if record_id is None:
                raise BackendError("Registro sin id", transient=False)
            return await self.store.update(endpoint, str(record_id), payload)

        return await self._item_by_item(_numbered(rows), update)

    async def bulk_delete(self, entity: EntityType | str, ids: Sequence[str]) -> BulkResult:
        endpoint = parse_entity_type(entity).endpoint

        async def delete(payload: dict[str, Any]) -> Any:
            return await self.store.delete(endpoint, str(payload["id"]))

        items = [(index + 1, {"id": record_id}) for index, record_id in enumerate(ids)]
        return await self._item_by_item(items, delete)

    def get_performance_stats(self) -> PerformanceStats:
        """Stats of the most recent operation."""
        state = self._state
        if state is None:
            return PerformanceStats(0.0, 0.0, 0.0, self._batch_stats.get_stats())
        duration = self._duration or (time.perf_counter() - state.started)
        avg_batch = duration / state.total_batches if state.total_batches else 0.0
        per_second = state.processed / duration if duration > 0 else 0.0
        error_rate = state.failed / state.total * 100 if state.total else 0.0
        return PerformanceStats(avg_batch, per_second, error_rate, self._batch_stats.get_stats())

    def optimize_batch_size(self, samples: Sequence[tuple[float, int]]) -> int:
        """Suggest a batch size from ``(duration_seconds, item_count)`` samples."""
        current = self.policy.batch_size
        if len(samples) < 3:
            return current
        throughputs = [count / duration for duration, count in samples if duration > 0]
        if not throughputs:
            return current
        average = sum(throughputs) / len(throughputs)
        if average < 10:
            return max(10, current // 2)
        if average > 100:
            return min(200, current * 2)
        return current

    # ---------------------------------------------------------------- internals

    def _begin(self, total: int, total_batches: int) -> float:
        if self._shared_token is None:
            self._token = CancellationToken()
        self._batch_stats = BatchStatsAccumulator()
        self._duration = 0.0
        started = time.perf_counter()
        self._state = _ProgressState(total, total_batches, started)
        logger.info(f"bulk operation started: items={total} batches={total_batches}")
        return started

    def _finish(
        self, started: float, total: int, successful: int, errors: list[BulkError], aborted: list[str]
    ) -> BulkResult:
        duration = time.perf_counter() - started
        self._duration = duration
        if self.progress_stream is not None:
            self.progress_stream.put_nowait(None)
        cancelled = self._token.cancelled
        result = BulkResult(
            success=not errors and not aborted and not cancelled,
            total=total,
            successful=successful,
            failed=len(errors),
            errors=errors,
            duration=duration,
            throughput=successful / duration if duration > 0 else 0.0,
            cancelled=cancelled,
            aborted_reason=aborted[0] if aborted else None,
        )
        logger.info(
            f"bulk operation finished: successful={result.successful} failed={result.failed} "
            f"cancelled={result.cancelled} duration={result.duration:.2f}s"
        )
        return result

    def _emit(self, snapshot: BulkProgress) -> None:
        if self.policy.progress_callback is not None:
            self.policy.progress_callback(snapshot)
        if self.progress_stream is not None:
            self.progress_stream.put_nowait(snapshot)

    async def _process_batch(
        self,
        number: int,
        batch: list[_Item],
        operation: Callable[[dict[str, Any]], Awaitable[Any]],
    ) -> BatchResult:
        start_wall = time.time()
        start = time.perf_counter()
        successful: list[Any] = []
        failed: list[BulkError] = []

        def result() -> BatchResult:
            return BatchResult(number, successful, failed, time.perf_counter() - start)

        for row_number, payload in batch:
            if self._token.cancelled:
                break
            try:
                ok, value = await self._commit_with_retry(row_number, payload, operation)
            except Exception as e:
                # Rows committed so far travel with the error so they are still counted.
                logger.error(f"batch {number} aborted at row {row_number}: {e!r}")
                failed.append(BulkError(row=row_number, data=payload, error=f"Fila {row_number}: {e}"))
                raise BulkOperationError(f"Error inesperado en lote {number}, fila {row_number}: {e}", result()) from e
            if ok:
                successful.append(value)
                continue
            failed.append(value)
            if not self.policy.continue_on_error:
                raise BulkOperationError(f"Error en lote {number}, fila {row_number}: {value.error}", result())

        batch_result = result()
        self._batch_stats.add_batch_time(batch_result.duration)
        if self.metrics_callback is not None:
            self.metrics_callback(
                BatchMetrics(
                    batch_number=number,
                    batch_size=len(successful) + len(failed),
                    elapsed_seconds=batch_result.duration,
                    start_time=start_wall,
                    end_time=time.time(),
                )
            )
        return batch_result

    async def _commit_with_retry(
        self,
        row_number: int,
        payload: dict[str, Any],
        operation: Callable[[dict[str, Any]], Awaitable[Any]],
    ) -> tuple[bool, Any]:
        """Returns (True, response) or (False, BulkError) after the retries are spent."""
        attempt = 0
        while True:
            try:
                return True, await operation(payload)
            except BackendError as e:
                if not e.transient or attempt >= self.policy.retry_attempts:
                    return False, BulkError(
                        row=row_number,
                        data=payload,
                        error=f"Fila {row_number}: {e.message}",
                        retry_count=attempt,
                    )
                attempt += 1
                logger.debug(f"row {row_number}: retry {attempt}/{self.policy.retry_attempts} after: {e.message}")
                await asyncio.sleep(self.policy.retry_delay_ms * attempt / 1000)

    async def _item_by_item(
        self, items: list[_Item], operation: Callable[[dict[str, Any]], Awaitable[Any]]
    ) -> BulkResult:
        started = self._begin(len(items), 0)
        successful = 0
        errors: list[BulkError] = []
        aborted: list[str] = []
        for row_number, payload in items:
            if self._token.cancelled:
                break
            try:
                ok, value = await self._commit_with_retry(row_number, payload, operation)
            except Exception as e:
                logger.error(f"item operation aborted at row {row_number}: {e!r}")
                error = BulkError(row=row_number, data=payload, error=f"Fila {row_number}: {e}")
                errors.append(error)
                self._emit(self._state.record(0, (error,), 0))
                aborted.append(f"Error inesperado en fila {row_number}: {e}")
                break
            if ok:
                successful += 1
                self._emit(self._state.record(1, (), 0))
                continue
            errors.append(value)
            self._emit(self._state.record(0, (value,), 0))
            if not self.policy.continue_on_error:
                aborted.append(value.error)
                break
        return self._finish(started, len(items), successful, errors, aborted)


def estimate_processing_time(item_count: int, avg_item_ms: float = 100, batch_size: int = 50) -> TimeEstimate:
    """Rough wall-clock estimate for committing ``item_count`` rows one at a time."""
    total_seconds = item_count * avg_item_ms / 1000
    minutes = math.floor(total_seconds / 60)
    seconds = int(total_seconds % 60 + 0.5)
    formatted = f"{minutes}m {seconds}s" if minutes > 0 else f"{seconds}s"
    return TimeEstimate(minutes, seconds, formatted)


_BASE_BATCH_SIZES = {"low": 100, "medium": 50, "high": 25}


def calculate_optimal_batch_size(item_count: int, complexity: str = "medium") -> int:
    base = _BASE_BATCH_SIZES.get(complexity)
    if base is None:
        raise ValueError(f"unknown complexity: {complexity}")
    if item_count < 100:
        return max(1, min(item_count, 20))
    if item_count > 10000:
        return max(base * 2, 100)
    return base


def format_error_report(errors: Sequence[BulkError]) -> str:
    if not errors:
        return "No hay errores que reportar."
    lines = [ERROR_REPORT_HEADER, f"Total de errores: {len(errors)}", "", "DETALLES:"]
    for index, error in enumerate(errors, start=1):
        data = json.dumps(error.data, ensure_ascii=False, default=str)[:100]
        lines.append(f"{index}. Fila {error.row}:")
        lines.append(f"   Error: {error.error}")
        lines.append(f"   Reintentos: {error.retry_count}")
        lines.append(f"   Datos: {data}...")
        lines.append("")
    return "\n".join(lines)
