from __future__ import annotations

from .reader import ReaderError, TabularReader

__all__ = ["ReaderError", "TabularReader"]
