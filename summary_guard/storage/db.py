"""
Database connection management.

Provides SQLite connections shared by the ledger, the cache and the sweep.
"""

import sqlite3
from pathlib import Path

# Seconds a writer waits for another writer's transaction before failing.
BUSY_TIMEOUT = 30.0


def get_connection(db_path: str = "summary_guard.db") -> sqlite3.Connection:
    """Create and return a SQLite connection in autocommit mode.

    Transactions are opened explicitly (``BEGIN IMMEDIATE``) by the
    callers that need a read-modify-write to be atomic.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign keys and WAL journaling enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT, isolation_level=None)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn
