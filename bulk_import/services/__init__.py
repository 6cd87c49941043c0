"""Session orchestration, progress display and summary rendering."""

from .orchestrator import AUTO_ENTITY, ImportAbortedError, ImportPipeline
from .summary import render_summary_line

__all__ = [
    "AUTO_ENTITY",
    "ImportAbortedError",
    "ImportPipeline",
    "render_summary_line",
]
