"""Database connection management.

Simple SQLite connection handling with schema initialization.
"""

import logging
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from editorcore.settings import get_settings

logger = logging.getLogger(__name__)

# Schema file location
SCHEMA_PATH = Path(__file__).parent / "schema.sql"


def default_db_path() -> Path:
    """Database path from EDITORCORE_DB_PATH (default ./editorcore.db)."""
    return Path(get_settings().store.db_path)


def get_connection(db_path: Path | str | None = None) -> sqlite3.Connection:
    """Get a database connection.

    Args:
        db_path: Path to database file. Uses default_db_path() if not specified.

    Returns:
        SQLite connection with row factory set to sqlite3.Row
    """
    path = Path(db_path) if db_path else default_db_path()
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_db(db_path: Path | str | None = None) -> Generator[sqlite3.Connection, None, None]:
    """Context manager for database connections.

    Usage:
        with get_db() as conn:
            cursor = conn.execute("SELECT * FROM articles")
            articles = cursor.fetchall()
    """
    conn = get_connection(db_path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path: Path | str | None = None) -> None:
    """Initialize database with schema.

    Creates tables if they don't exist. Safe to call multiple times.

    Args:
        db_path: Path to database file. Uses default_db_path() if not specified.
    """
    schema_sql = SCHEMA_PATH.read_text()

    with get_db(db_path) as conn:
        conn.executescript(schema_sql)
        # Run migrations for existing databases
        _run_migrations(conn)


def _run_migrations(conn: sqlite3.Connection) -> None:
    """Run database migrations for existing databases.

    Adds columns that may not exist in older database versions.
    Safe to call multiple times - checks for column existence first.
    """
    # Migration: approval workflow timestamps on articles
    _add_column_if_not_exists(conn, "articles", "submitted_for_approval_at", "TEXT")
    _add_column_if_not_exists(conn, "articles", "approved_by", "TEXT")
    _add_column_if_not_exists(conn, "articles", "approved_at", "TEXT")
    _add_column_if_not_exists(conn, "articles", "archived_at", "TEXT")

    # Migration: optimistic concurrency counter on tables created before it existed
    for table in ("articles", "categories", "profiles"):
        _add_column_if_not_exists(conn, table, "version", "INTEGER NOT NULL DEFAULT 1")


def _add_column_if_not_exists(
    conn: sqlite3.Connection, table: str, column: str, column_def: str
) -> None:
    """Add a column to a table if it doesn't exist.

    Args:
        conn: Database connection
        table: Table name
        column: Column name to add
        column_def: Column definition (type and default)
    """
    cursor = conn.execute(f"PRAGMA table_info({table})")
    columns = {row["name"] for row in cursor.fetchall()}
    if column not in columns:
        logger.info("[MIGRATE] Adding %s.%s", table, column)
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_def}")


def reset_db(db_path: Path | str | None = None) -> None:
    """Reset database - deletes the file and reinitializes.

    WARNING: This deletes all data!

    Args:
        db_path: Path to database file. Uses default_db_path() if not specified.
    """
    path = Path(db_path) if db_path else default_db_path()

    if path.exists():
        path.unlink()

    init_db(path)
