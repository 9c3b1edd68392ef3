"""SQLite-backed history of per-function status verdicts."""

from .status_store import StatusRecord, StatusStore

__all__ = ["StatusRecord", "StatusStore"]
