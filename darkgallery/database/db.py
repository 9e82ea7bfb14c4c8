"""
Database connection management.
"""
import sqlite3
import logging
from pathlib import Path
from typing import Optional, Union

from ..exceptions import DatabaseError
from .schema import init_schema


class DBManager:
    def __init__(self, db_path: Union[str, Path]):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        """
        Connects to the SQLite database and configures performance pragmas.
        """
        if self._conn:
            return self._conn

        logging.info(f"Connecting to database: {self.db_path}")
        try:
            # Indexing passes may be driven from a worker thread; they never run concurrently.
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row

            # Performance Tuning (Safe for single-writer, multi-reader)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA temp_store=MEMORY;")
            conn.execute("PRAGMA foreign_keys=ON;")

            # Ensure schema exists
            init_schema(conn)
        except sqlite3.Error as e:
            raise DatabaseError(f"Cannot open catalogue {self.db_path}: {e}") from e

        self._conn = conn
        return self._conn

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
