"""SQLite persistence.

Provides connection management, schema initialization and a RecordStore
implementation backed by a local database file.
"""

from editorcore.database.connection import get_connection, get_db, init_db, reset_db
from editorcore.database.store import SQLiteRecordStore, map_sqlite_error

__all__ = [
    # Connection
    "get_connection",
    "get_db",
    "init_db",
    "reset_db",
    # Record store
    "SQLiteRecordStore",
    "map_sqlite_error",
]
