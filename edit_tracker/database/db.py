"""
Database connection management.
"""
import sqlite3
import logging
import threading
from pathlib import Path
from typing import Optional

from ..exceptions import CacheUnavailable
from .schema import init_schema


class DBManager:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        # The connection is shared between threads; every statement runs under this lock.
        # Re-entrant so a batch can hold it across nested operations.
        self._lock = threading.RLock()

    def connect(self) -> sqlite3.Connection:
        """
        Connects to the SQLite database and configures performance pragmas.
        Raises CacheUnavailable if the file cannot be opened or initialized.
        """
        with self._lock:
            if self._conn:
                return self._conn

            logging.info(f"Connecting to cache database: {self.db_path}")
            conn = None
            try:
                if str(self.db_path) != ":memory:":
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self.db_path), check_same_thread=False)

                # Performance Tuning (Safe for single-writer, multi-reader)
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
                conn.execute("PRAGMA temp_store=MEMORY;")

                # Ensure schema exists
                init_schema(conn)
            except (sqlite3.Error, OSError) as e:
                if conn is not None:
                    conn.close()
                raise CacheUnavailable(Path(self.db_path), e) from e

            self._conn = conn
            return self._conn

    def close(self):
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def lock(self) -> threading.RLock:
        """Returns the lock serializing access to the connection."""
        return self._lock

    def size_bytes(self) -> int:
        """On-disk size of the database including its WAL file."""
        if str(self.db_path) == ":memory:":
            return 0
        total = 0
        for suffix in ("", "-wal"):
            p = Path(f"{self.db_path}{suffix}")
            if p.exists():
                total += p.stat().st_size
        return total
