from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

from ..api.client import BackendError
from ..config.loader import DEFAULT_CONFIG_PATH, ConfigError, config_from_dict, load_config
from ..excel.reader import ReaderError
from ..logging.init import log_summary, setup_logging
from ..models.config_models import ImportConfig
from ..models.entity import EntityType, UnsupportedEntityError
from ..models.processing_result import PipelineResult
from ..services.orchestrator import AUTO_ENTITY, ImportAbortedError, ImportPipeline
from ..services.summary import render_summary_line

"""CLI entrypoint.

bulk-import FILE --entity {cliente,empresa,personal,auto}
            [--validate-only] [--preview] [--config PATH] [--debug]

Exit codes:
- 0: every row committed (or, with --validate-only, every row valid)
- 2: partial failure (invalid, skipped or failed rows)
- 1: fatal (configuration, structure, unreadable file, backend unreachable)
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

ENTITY_CHOICES = [e.value for e in EntityType if e is not EntityType.UNKNOWN] + [AUTO_ENTITY]


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="bulk-import", description="Spreadsheet -> fleet backend bulk importer")
    p.add_argument("file", type=Path, help="Spreadsheet (.xlsx) to import")
    p.add_argument("--entity", choices=ENTITY_CHOICES, default=AUTO_ENTITY, help="Entity type of the rows")
    p.add_argument("--validate-only", action="store_true", help="Validate without committing")
    p.add_argument("--preview", action="store_true", help="Print sheet headers & first rows then exit")
    p.add_argument("--config", type=Path, default=None, help=f"Config YAML (default: {DEFAULT_CONFIG_PATH})")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def _load_config(path: Path | None) -> ImportConfig:
    # An explicit path must exist; the default one is optional.
    if path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return config_from_dict({})
        path = DEFAULT_CONFIG_PATH
    return load_config(path)


def _preview(pipeline: ImportPipeline, file: Path) -> int:
    previews = asyncio.run(pipeline.preview_file(file))
    for preview in previews:
        print(f"SHEET: {preview.sheet_name} entity={preview.entity.value} rows={preview.total_rows}")
        print(f"  cols={preview.headers}")
        for row in preview.sample:
            print(f"  {row}")
    return EXIT_SUCCESS_ALL


def _exit_code(result: PipelineResult, validate_only: bool) -> int:
    summary = result.summary
    if validate_only:
        return EXIT_SUCCESS_ALL if summary.error_rows == 0 else EXIT_PARTIAL_FAILURE
    bulk = result.bulk_result
    if summary.error_rows or summary.skipped_rows or summary.failed_rows:
        return EXIT_PARTIAL_FAILURE
    if bulk is not None and not bulk.success:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    # None only: an explicit [] must not fall back to sys.argv (pytest flags).
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)

    logger = setup_logging(debug=args.debug)
    # .env wins over variables already set in the process
    load_dotenv(dotenv_path=Path(".env"), override=True)
    logger.debug("debug mode enabled")

    try:
        cfg = _load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if not args.file.exists():
        logger.error(f"file not found: {args.file}")
        return EXIT_FATAL

    pipeline = ImportPipeline(cfg)
    try:
        if args.preview:
            return _preview(pipeline, args.file)
        if args.validate_only:
            result = asyncio.run(pipeline.validate_file(args.file, args.entity))
        else:
            result = asyncio.run(pipeline.process_file(args.file, args.entity))
    except ImportAbortedError as e:
        logger.error(f"structure: {e}")
        return EXIT_FATAL
    except (ReaderError, UnsupportedEntityError) as e:
        logger.error(f"input: {e}")
        return EXIT_FATAL
    except BackendError as e:
        logger.error(f"backend: {e}")
        return EXIT_FATAL

    entity = result.entity.value if result.entity is not None else args.entity
    if result.report_path:
        logger.info(f"error log written: {result.report_path}")

    summary_line = render_summary_line(entity, result.summary)
    # log_summary adds the "SUMMARY " prefix itself
    log_summary(summary_line[len("SUMMARY "):])
    return _exit_code(result, args.validate_only)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
