from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .bulk import BulkProgress

"""Config dataclasses for the bulk import pipeline.

These are the typed, immutable forms of the YAML configuration produced by
``bulk_import.config.loader``. Library callers may also build them directly;
every field carries the default used when the YAML omits it.
"""

__all__ = [
    "ApiConfig",
    "ReaderOptions",
    "ImportPolicy",
    "ImportConfig",
    "ProgressCallback",
]

ProgressCallback = Callable[["BulkProgress"], None]


@dataclass(frozen=True)
class ApiConfig:
    """Backend persistence API connection settings.

    Environment variables (BULK_IMPORT_API_URL / BULK_IMPORT_API_TOKEN) take
    precedence over these values.
    """
    base_url: str = "http://localhost:3000/api"
    timeout_seconds: float = 30.0
    token: str | None = None


@dataclass(frozen=True)
class ReaderOptions:
    """Tabular reader behaviour."""
    max_rows: int = 10000  # ceiling for used rows over the whole workbook
    required_sheets: tuple[str, ...] = ()
    skip_empty_rows: bool = True
    trim: bool = True


@dataclass(frozen=True)
class ImportPolicy:
    """Caller-facing knobs of one import session."""
    batch_size: int = 50
    max_concurrency: int = 3  # simultaneous batches
    retry_attempts: int = 2
    retry_delay_ms: int = 1000  # linear backoff unit
    continue_on_error: bool = True
    auto_correct: bool = True
    skip_invalid_rows: bool = False
    generate_report: bool = True
    progress_callback: ProgressCallback | None = field(default=None, compare=False)

    @property
    def recovery_enabled(self) -> bool:
        return self.auto_correct or self.skip_invalid_rows


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object."""
    api: ApiConfig = field(default_factory=ApiConfig)
    reader: ReaderOptions = field(default_factory=ReaderOptions)
    policy: ImportPolicy = field(default_factory=ImportPolicy)
    logs_dir: Path = Path("./logs")
