from __future__ import annotations

from .client import BackendClient, BackendError, RecordStore

__all__ = ["BackendClient", "BackendError", "RecordStore"]
