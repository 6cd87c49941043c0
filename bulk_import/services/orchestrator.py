from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace

from ..api.client import BackendClient, RecordStore
from ..commit.bulk_operations import BulkOperations, CancellationToken
from ..excel.reader import Source, TabularReader
from ..logging.error_log import (
    ERROR_TYPE_SKIPPED,
    ERROR_TYPE_STILL_INVALID,
    ERROR_TYPE_STRUCTURE,
    ERROR_TYPE_TEMPLATE,
    ERROR_TYPE_VALIDATION,
    ErrorLogBuffer,
)
from ..models.bulk import BulkProgress, BulkResult
from ..models.config_models import ImportConfig
from ..models.entity import EntityType, UnsupportedEntityError, parse_entity_type
from ..models.error_record import ErrorRecord
from ..models.excel_file import FileInfo, ProcessedSheet
from ..models.processing_result import ImportSummary, PipelineResult, SheetPreview
from ..models.recovery import RecoveryResult
from ..models.row_data import RowData
from ..models.validation import ValidationResult
from ..recovery.planner import RecoveryPlanner
from ..validation.engine import ValidationEngine
from ..validation.rules import RuleCatalog
from .progress import ProgressTracker, StageIndicator, chain_progress_callbacks

"""Import session orchestration.

One session: load file -> structure check -> pick sheet -> validate
(template + engine) -> recover (optional) -> bulk commit -> ledger + summary.

Structural problems abort the session before any row is touched. Everything
row-level is returned in the PipelineResult and, when ``generate_report`` is
on, appended to the JSON Lines error ledger.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "ImportPipeline",
    "ImportAbortedError",
    "AUTO_ENTITY",
]

AUTO_ENTITY = "auto"

MSG_STILL_INVALID = "Fila con errores no corregidos"
MSG_SKIPPED = "Fila saltada debido a errores críticos"


class ImportAbortedError(Exception):
    """Structural validation failed; no row was validated or committed."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = list(errors)


class ImportPipeline:
    """Drives import sessions for one configuration.

    ``store`` is shared by every session when given; otherwise each session
    opens (and closes) its own BackendClient from ``config.api``. A fresh
    TabularReader is created per session unless ``reader`` is injected.
    """

    def __init__(
        self,
        config: ImportConfig | None = None,
        store: RecordStore | None = None,
        reader: TabularReader | None = None,
        catalog: RuleCatalog | None = None,
    ) -> None:
        self.config = config or ImportConfig()
        self.store = store
        self.reader = reader
        self.catalog = catalog or RuleCatalog()
        self._token: CancellationToken | None = None

    # ------------------------------------------------------------------ public

    async def process_file(
        self,
        source: Source,
        entity: EntityType | str,
        *,
        filename: str | None = None,
        progress_stream: asyncio.Queue[BulkProgress | None] | None = None,
    ) -> PipelineResult:
        """Full session: validate, optionally recover, then commit."""
        return await self._run(source, entity, filename, commit=True, progress_stream=progress_stream)

    async def validate_file(
        self, source: Source, entity: EntityType | str, *, filename: str | None = None
    ) -> PipelineResult:
        """Validate-only session; never commits anything."""
        return await self._run(source, entity, filename, commit=False, progress_stream=None)

    async def preview_file(
        self, source: Source, sample_size: int = 5, *, filename: str | None = None
    ) -> list[SheetPreview]:
        """First rows and detected entity of every sheet."""
        reader = self._new_reader()
        try:
            await asyncio.to_thread(reader.load, source, filename)
            previews: list[SheetPreview] = []
            for name in reader.sheet_names:
                sheet = reader.read_sheet(name)
                previews.append(
                    SheetPreview(
                        sheet_name=name,
                        entity=reader.detect_entity_type(name),
                        headers=sheet.headers,
                        total_rows=sheet.processed_rows,
                        sample=sheet.as_dicts()[:sample_size],
                    )
                )
            return previews
        finally:
            reader.dispose()

    def cancel(self) -> None:
        """Cancel the running session, if any.

        Observed between stages and by the commit engine before each batch and
        row; a session cancelled before its commit stage commits nothing.
        """
        if self._token is None:
            return
        self._token.cancel()
        logger.warning("import session cancellation requested")

    # ------------------------------------------------------------------ session

    async def _run(
        self,
        source: Source,
        entity: EntityType | str,
        filename: str | None,
        *,
        commit: bool,
        progress_stream: asyncio.Queue[BulkProgress | None] | None,
    ) -> PipelineResult:
        start = time.perf_counter()
        policy = self.config.policy
        recover = commit and policy.recovery_enabled
        total_stages = 2 + (1 if recover else 0) + (1 if commit else 0)

        token = CancellationToken()
        self._token = token
        reader = self._new_reader()
        error_log = ErrorLogBuffer(self.config.logs_dir)
        try:
            file_info = await asyncio.to_thread(reader.load, source, filename)
            stages = StageIndicator(file_info.filename, total_stages)
            logger.info(f"Processing file: {file_info.filename} sheets={file_info.sheets}")

            stages.start_stage("read")
            structure = reader.validate_structure()
            if not structure.valid:
                stages.finish_stage(success=False)
                self._abort(error_log, file_info, structure.errors)
            sheet_name, entity_type = self._resolve_sheet(reader, entity)
            sheet = reader.read_sheet(sheet_name)
            stages.finish_stage(rows=sheet.processed_rows)
            logger.info(f"sheet={sheet_name} entity={entity_type.value} rows={sheet.processed_rows}")

            async with self._session_store() as store:
                stages.start_stage("validate")
                engine = ValidationEngine(self.catalog)
                await engine.load_reference_data(store)
                validation = engine.validate_with_template(entity_type, sheet.rows)
                stages.finish_stage(success=validation.is_valid, rows=validation.summary.valid_rows)
                logger.info(
                    f"validation: valid={validation.summary.valid_rows} "
                    f"invalid={validation.summary.error_rows} warnings={len(validation.warnings)}"
                )

                recovery: RecoveryResult | None = None
                to_commit: list[RowData] = list(validation.valid_rows)
                if token.cancelled:
                    logger.warning("session cancelled before commit; no row will be written")
                    recover = False
                if recover and validation.errors:
                    stages.start_stage("recover")
                    planner = RecoveryPlanner(policy, snapshot=engine.snapshot, catalog=self.catalog)
                    recovery = planner.execute(sheet.rows, validation, entity=entity_type)
                    to_commit = list(recovery.recovered_rows)
                    stages.finish_stage(success=recovery.success, rows=len(to_commit))
                elif recover:
                    stages.start_stage("recover")
                    stages.finish_stage(rows=len(to_commit))

                bulk: BulkResult | None = None
                if commit:
                    stages.start_stage("commit")
                    bulk = await self._commit(store, entity_type, to_commit, progress_stream, token)
                    stages.finish_stage(success=bulk.success, rows=bulk.successful)

            summary = self._summarize(validation, recovery, bulk, time.perf_counter() - start)
            report_path = self._write_ledger(error_log, file_info, sheet, validation, recovery, bulk)
            return PipelineResult(
                file_info=file_info,
                processed_data=sheet,
                validation_result=validation,
                summary=summary,
                recovery_result=recovery,
                bulk_result=bulk,
                report_path=report_path,
                entity=entity_type,
            )
        finally:
            reader.dispose()
            self._token = None

    def _new_reader(self) -> TabularReader:
        return self.reader or TabularReader(self.config.reader)

    @asynccontextmanager
    async def _session_store(self) -> AsyncIterator[RecordStore]:
        if self.store is not None:
            yield self.store
            return
        async with BackendClient(self.config.api) as client:
            yield client

    def _abort(self, error_log: ErrorLogBuffer, file_info: FileInfo, errors: list[str]) -> None:
        for message in errors:
            error_log.append(ErrorRecord.create(file_info.filename, "", -1, ERROR_TYPE_STRUCTURE, message))
        path = error_log.flush()
        logger.error(f"structure validation failed for {file_info.filename}: {'; '.join(errors)}")
        if path is not None:
            logger.info(f"error log: {path}")
        raise ImportAbortedError(errors)

    @staticmethod
    def _resolve_sheet(reader: TabularReader, entity: EntityType | str) -> tuple[str, EntityType]:
        names = reader.sheet_names
        if isinstance(entity, str) and entity.strip().lower() == AUTO_ENTITY:
            for name in names:
                detected = reader.detect_entity_type(name)
                if detected is not EntityType.UNKNOWN:
                    return name, detected
            raise UnsupportedEntityError("No se pudo detectar el tipo de entidad en ninguna hoja")

        entity_type = parse_entity_type(entity)
        for candidate in (entity_type.value, entity_type.collection):
            found = reader.find_sheet(candidate)
            if found is not None:
                return found, entity_type
        for name in names:
            if reader.detect_entity_type(name) is entity_type:
                return name, entity_type
        return names[0], entity_type

    async def _commit(
        self,
        store: RecordStore,
        entity: EntityType,
        rows: list[RowData],
        progress_stream: asyncio.Queue[BulkProgress | None] | None,
        token: CancellationToken,
    ) -> BulkResult:
        policy = self.config.policy
        with ProgressTracker(len(rows)) as tracker:
            callback = chain_progress_callbacks(tracker.update_from, policy.progress_callback)
            operations = BulkOperations(
                store,
                replace(policy, progress_callback=callback),
                progress_stream=progress_stream,
                cancellation=token,
            )
            result = await operations.bulk_insert(entity, rows)
        stats = operations.get_performance_stats()
        logger.info(
            f"commit: inserted={result.successful} failed={result.failed} "
            f"batches={stats.batch_stats.total_batches} "
            f"avg_batch={stats.avg_batch_seconds:.3f}s p95={stats.batch_stats.p95_batch_seconds:.3f}s"
        )
        if result.cancelled:
            logger.warning("commit cancelled before all rows were processed")
        if result.aborted_reason:
            logger.error(f"commit aborted: {result.aborted_reason}")
        return result

    @staticmethod
    def _summarize(
        validation: ValidationResult,
        recovery: RecoveryResult | None,
        bulk: BulkResult | None,
        elapsed: float,
    ) -> ImportSummary:
        if recovery is not None:
            valid = len(recovery.recovered_rows)
            invalid = len(recovery.still_invalid_rows)
            skipped = len(recovery.skipped_rows)
        else:
            valid = len(validation.valid_rows)
            invalid = len(validation.invalid_rows)
            skipped = 0
        inserted = bulk.successful if bulk is not None else 0
        failed = bulk.failed if bulk is not None else 0
        throughput = inserted / elapsed if elapsed > 0 else 0.0
        return ImportSummary(
            total_rows=validation.summary.total_rows,
            valid_rows=valid,
            error_rows=invalid,
            skipped_rows=skipped,
            inserted_rows=inserted,
            failed_rows=failed,
            elapsed_seconds=elapsed,
            throughput_rows_per_sec=throughput,
        )

    def _write_ledger(
        self,
        error_log: ErrorLogBuffer,
        file_info: FileInfo,
        sheet: ProcessedSheet,
        validation: ValidationResult,
        recovery: RecoveryResult | None,
        bulk: BulkResult | None,
    ) -> str | None:
        if not self.config.policy.generate_report:
            return None
        name, sheet_name = file_info.filename, sheet.sheet_name
        template_ids = {id(e) for e in validation.template_errors}
        field_errors = [e for e in validation.errors if id(e) not in template_ids]
        error_log.add_validation_errors(name, sheet_name, field_errors, ERROR_TYPE_VALIDATION)
        error_log.add_validation_errors(name, sheet_name, validation.template_errors, ERROR_TYPE_TEMPLATE)
        if recovery is not None:
            error_log.add_rows(name, sheet_name, recovery.still_invalid_rows, ERROR_TYPE_STILL_INVALID, MSG_STILL_INVALID)
            error_log.add_rows(name, sheet_name, recovery.skipped_rows, ERROR_TYPE_SKIPPED, MSG_SKIPPED)
        if bulk is not None:
            error_log.add_bulk_errors(name, sheet_name, bulk.errors)
        if not len(error_log):
            return None
        path = error_log.flush()
        logger.info(f"error log: {path}")
        return str(path) if path is not None else None
