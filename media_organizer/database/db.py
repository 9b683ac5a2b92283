"""
Journal database connection management.
"""
import sqlite3
import logging
import threading
from pathlib import Path
from typing import Optional

from .. import config
from ..exceptions import JournalError
from .schema import init_schema


class DBManager:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        # One connection is shared by all pipeline threads; every statement
        # goes through this lock.
        self._lock = threading.RLock()

    def connect(self) -> sqlite3.Connection:
        """
        Opens the SQLite journal and configures WAL mode so readers never
        block the single writer.
        """
        if self._conn:
            return self._conn

        logging.info(f"Opening journal database: {self.db_path}")
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Autocommit: every journal update is durable on its own
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=config.DB_BUSY_TIMEOUT_MS / 1000,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute(f"PRAGMA busy_timeout={config.DB_BUSY_TIMEOUT_MS};")
            init_schema(conn)
        except (sqlite3.Error, OSError) as e:
            raise JournalError(f"failed to initialize journal database {self.db_path}: {e}") from e

        self._conn = conn
        return self._conn

    def close(self):
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def lock(self) -> threading.RLock:
        """Returns the lock guarding the shared connection."""
        return self._lock


def remove_journal(db_path: Path) -> bool:
    """Deletes the journal and its WAL/SHM companions. Returns True if it existed."""
    existed = db_path.exists()
    for suffix in config.JOURNAL_SUFFIXES:
        Path(f"{db_path}{suffix}").unlink(missing_ok=True)
    return existed
