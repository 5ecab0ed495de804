"""
Database connection management.

Provides the SQLite connection shared by the ledger, recipe and cache tables.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "meal_guard.db"


def get_connection(db_path: str = DEFAULT_DB_PATH, timeout: float = 10.0) -> sqlite3.Connection:
    """Create and return a SQLite connection with a bounded busy timeout.

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait on a locked database before failing

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=timeout)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
