from __future__ import annotations

import sys
from collections.abc import Callable
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

from ..models.bulk import BulkProgress

"""Progress display with tqdm (TTY only).

- One tqdm bar per commit operation, fed by BulkProgress snapshots
- Disabled when stdout is not a TTY so CI logs stay free of control sequences
- Stage lines (read / validate / recover / commit) printed under the same rule
"""

__all__ = [
    "ProgressTracker",
    "StageIndicator",
    "is_tty_enabled",
    "chain_progress_callbacks",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class ProgressTracker:
    """tqdm bar over committed rows.

    Snapshots are absolute, so the bar is moved to ``processed`` rather than
    incremented; a stale snapshot never moves it backwards.
    """

    def __init__(self, total_rows: int, *, description: str = "Committing rows") -> None:
        self.total_rows = total_rows
        self.description = description
        self.position = 0

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=description,
                unit="row",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def update_from(self, progress: BulkProgress) -> None:
        delta = progress.processed - self.position
        if delta <= 0:
            return
        self.position = progress.processed
        if self.enabled and self.pbar is not None:
            self.pbar.update(delta)
            self.pbar.set_postfix(
                ok=progress.successful,
                failed=progress.failed,
                batch=f"{progress.current_batch}/{progress.total_batches}",
            )

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class StageIndicator:
    """Prints one status line per pipeline stage.

    Stages are fast compared to the commit, so no bar is drawn for them.
    """

    def __init__(self, file_name: str, total_stages: int) -> None:
        self.file_name = file_name
        self.total_stages = total_stages
        self.current_stage = 0
        self.enabled = is_tty_enabled()

    def start_stage(self, stage_name: str) -> None:
        self.current_stage += 1
        if self.enabled:
            print(f"  Stage {self.current_stage}/{self.total_stages}: {stage_name}", end="", flush=True)

    def finish_stage(self, success: bool = True, rows: int = 0) -> None:
        if self.enabled:
            status = "✓" if success else "✗"
            if rows > 0:
                print(f" - {rows} rows {status}")
            else:
                print(f" {status}")


def chain_progress_callbacks(
    *callbacks: Callable[[BulkProgress], None] | None,
) -> Callable[[BulkProgress], None]:
    """Fan one snapshot out to several consumers, skipping None entries."""
    active = [cb for cb in callbacks if cb is not None]

    def fan_out(progress: BulkProgress) -> None:
        for cb in active:
            cb(progress)

    return fan_out
