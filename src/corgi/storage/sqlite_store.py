"""
Local file-backed dataset store (sqlite3, read-only).
Queries run in a worker thread so decode calls never block the event loop.
"""
import asyncio
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, List, Optional, Sequence

from ..core.errors import BackendError
from .base import Row, SqlDatasetStore

logger = logging.getLogger(__name__)


class SQLiteStore(SqlDatasetStore):
    """Reads a vPIC-lite SQLite file. One connection, reused across decodes."""

    def __init__(self, path: str, timeout: float = 5.0):
        self.path = str(path)
        self.timeout = timeout
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    async def open(self) -> "SQLiteStore":
        if self._conn is None:
            self._conn = await asyncio.to_thread(self._connect)
        return self

    def _connect(self) -> sqlite3.Connection:
        if not Path(self.path).exists():
            raise BackendError(f"Database file not found: {self.path}")
        try:
            uri = f"{Path(self.path).resolve().as_uri()}?mode=ro"
            conn = sqlite3.connect(uri, uri=True, timeout=self.timeout, check_same_thread=False)
            conn.row_factory = sqlite3.Row
        except sqlite3.Error as e:
            raise BackendError(f"Could not open database {self.path}: {e}") from e
        logger.debug(f"Opened SQLite dataset {self.path}")
        return conn

    def _execute(self, sql: str, params: Sequence[Any]) -> List[Row]:
        if self._conn is None:
            raise BackendError("Store is not open")
        try:
            with self._lock:
                cursor = self._conn.execute(sql, tuple(params))
                return [dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise BackendError(f"Dataset query failed: {e}") from e

    async def _query(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        if self._conn is None:
            await self.open()
        return await asyncio.to_thread(self._execute, sql, params)

    async def close(self) -> None:
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await asyncio.to_thread(conn.close)
            logger.debug(f"Closed SQLite dataset {self.path}")
