"""
Remote snapshot store.
Fetches a compressed dataset snapshot hosted elsewhere, unpacks it into a
private temporary directory and serves queries from it.
"""
import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any, List, Optional, Sequence

import httpx

from ..config import DATABASE_FILENAME
from ..core.errors import BackendError
from .base import Row, SqlDatasetStore
from .cache_manager import decompress_database, download_file
from .sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


class RemoteSnapshotStore(SqlDatasetStore):
    """Dataset store backed by a `.gz` snapshot URL."""

    def __init__(
        self,
        url: str,
        timeout: float = 60.0,
        max_redirects: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.transport = transport
        self._workdir: Optional[Path] = None
        self._store: Optional[SQLiteStore] = None
        self._opening: Optional[asyncio.Lock] = None

    async def open(self) -> "RemoteSnapshotStore":
        if self._opening is None:
            self._opening = asyncio.Lock()
        async with self._opening:
            if self._store is None:
                self._store = await self._fetch()
        return self

    async def _fetch(self) -> SQLiteStore:
        workdir = Path(tempfile.mkdtemp(prefix="corgi-remote-"))
        compressed = workdir / f"{DATABASE_FILENAME}.gz"
        database = workdir / DATABASE_FILENAME
        try:
            logger.info(f"Fetching dataset snapshot from {self.url}")
            await download_file(
                self.url,
                compressed,
                timeout=self.timeout,
                max_redirects=self.max_redirects,
                transport=self.transport,
            )
            try:
                await asyncio.to_thread(decompress_database, compressed, database)
            except (OSError, EOFError) as e:
                raise BackendError(f"Snapshot from {self.url} could not be decompressed: {e}") from e
            store = await SQLiteStore(str(database)).open()
        except BaseException:
            shutil.rmtree(workdir, ignore_errors=True)
            raise
        finally:
            compressed.unlink(missing_ok=True)
        self._workdir = workdir
        return store

    async def _query(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        if self._store is None:
            await self.open()
        return await self._store._query(sql, params)

    async def close(self) -> None:
        if self._store is not None:
            await self._store.close()
            self._store = None
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._workdir = None
