"""
Per-profile library database file.

Workspace.unlock opens one DBManager per profile and Workspace.lock closes
it; a closed connection makes any straggling query fail with
sqlite3.ProgrammingError, which the scan loop turns into NotReadyError.
"""
import sqlite3
import logging
from pathlib import Path
from typing import Optional

from .schema import init_schema

# WAL keeps readers (list/search) unblocked while a scan writes
PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA foreign_keys=ON;",
)


class DBManager:
    def __init__(self, db_path: Path, busy_timeout: float = 15):
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        """Opens (or returns the already open) connection, creating the schema on first use."""
        if self._conn:
            return self._conn

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        logging.info(f"Opening library: {self.db_path}")
        # A scan may run on a worker thread while cancel/lock come from another
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        for pragma in PRAGMAS:
            conn.execute(pragma)
        init_schema(conn)

        self._conn = conn
        return conn

    def close(self):
        if self._conn:
            logging.debug(f"Closing library: {self.db_path}")
            self._conn.close()
            self._conn = None

    def __enter__(self) -> sqlite3.Connection:
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
