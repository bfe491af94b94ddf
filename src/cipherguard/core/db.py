# Core Module - Vault SQLite Connection Helper
#
# SQLiteStore opens every connection through `connect()` so the vault
# database always runs with the same PRAGMAs:
#
#   - journal_mode=WAL: a writer that dies mid-transaction leaves the
#     previous vault record readable
#   - synchronous=FULL: a committed record rewrite is on disk before
#     the engine swaps its in-memory entries
#   - secure_delete=ON: a replaced or reset record is overwritten with
#     zeros instead of lingering in free pages
#   - busy_timeout: a second CLI process waits instead of failing

import sqlite3
from pathlib import Path
from typing import Union

BUSY_TIMEOUT_MS = 5000


def connect(db_path: Union[str, Path], *, row_factory: bool = False) -> sqlite3.Connection:
    """Open the vault database with durability and scrubbing PRAGMAs.

    Args:
        db_path: Path to the database file.
        row_factory: If True, rows come back as sqlite3.Row.
    """
    conn = sqlite3.connect(str(db_path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=FULL")
    conn.execute("PRAGMA secure_delete=ON")
    conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    if row_factory:
        conn.row_factory = sqlite3.Row
    return conn
