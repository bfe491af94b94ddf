# Vault - Durable Key/Value Stores
#
# The engine only needs get/set/delete of opaque bytes under one fixed key.
# Three backends:
#   - MemoryStore: dict-backed (tests, embedding)
#   - FileStore:   one file per key, atomic replace on write
#   - SQLiteStore: key/value table via core.db.connect (WAL mode)
#
# Every backend converts medium errors into StoreError so the engine can
# wrap them into PersistFailure / InitializationFailure.

import os
import re
import sqlite3
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

from ..core.config import VaultSettings
from ..core.db import connect as db_connect
from ..core.log_setup import get_logger
from .exceptions import StoreError

logger = get_logger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9._-]+$")


class KeyValueStore(ABC):
    """Byte-oriented key/value storage contract."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or None if the key is absent."""

    @abstractmethod
    def set(self, key: str, value: bytes) -> None:
        """Store bytes under key, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key. Deleting an absent key is not an error."""


class MemoryStore(KeyValueStore):
    """In-process store. Nothing survives the process."""

    def __init__(self, initial: Optional[Dict[str, bytes]] = None):
        self._data: Dict[str, bytes] = dict(initial or {})

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class FileStore(KeyValueStore):
    """
    Stores each key as a file inside ``directory``.

    Writes go to a temp file in the same directory, are fsync'd, then
    renamed over the target with os.replace(), so a reader sees either the
    old record or the new one and never a partial write.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory).expanduser()

    def _path_for(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise StoreError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[bytes]:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreError(f"Failed to read {path.name}: {e}") from e

    def set(self, key: str, value: bytes) -> None:
        path = self._path_for(key)
        tmp_name = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=self.directory)
            with os.fdopen(fd, "wb") as fh:
                fh.write(value)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise StoreError(f"Failed to write {path.name}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning("temp_file_cleanup_failed", path=tmp_name)

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise StoreError(f"Failed to delete {path.name}: {e}") from e


class SQLiteStore(KeyValueStore):
    """SQLite key/value store.

    Args:
        db_path: Path to SQLite file.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_database()
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"Failed to open vault database: {e}") from e

    def _init_database(self):
        conn = db_connect(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS vault_store (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        return db_connect(self.db_path, row_factory=True)

    def get(self, key: str) -> Optional[bytes]:
        try:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT value FROM vault_store WHERE key = ?", (key,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read key {key!r}: {e}") from e
        if row is None:
            return None
        return bytes(row["value"])

    def set(self, key: str, value: bytes) -> None:
        now = datetime.now(timezone.utc).isoformat()
        try:
            conn = self._connect()
            try:
                with conn:
                    conn.execute(
                        """INSERT INTO vault_store (key, value, updated_at)
                           VALUES (?, ?, ?)
                           ON CONFLICT(key) DO UPDATE SET
                               value = excluded.value,
                               updated_at = excluded.updated_at""",
                        (key, sqlite3.Binary(value), now),
                    )
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to write key {key!r}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            conn = self._connect()
            try:
                with conn:
                    conn.execute("DELETE FROM vault_store WHERE key = ?", (key,))
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete key {key!r}: {e}") from e


def build_store(settings: VaultSettings) -> KeyValueStore:
    """Create the store backend selected by configuration."""
    if settings.store_backend == "sqlite":
        return SQLiteStore(settings.sqlite_path)
    return FileStore(settings.data_dir)
