"""
Database connection management.

Provides SQLite connections for the key store and audit ledger.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "quota_refill.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Open a SQLite connection to the key store.

    The caller owns the connection and must close it.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection
    """
    return sqlite3.connect(str(Path(db_path)))
