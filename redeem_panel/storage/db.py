"""
Database connection management.

Provides SQLite connections for the request, used-key and cooldown tables.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "data/redeem.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection with name-addressable rows.

    The parent directory of the database file is created on first use.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection whose rows support column-name lookup
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    return conn
