from .sqlite_store import SQLiteStateStore

__all__ = ["SQLiteStateStore"]
