"""
Dataset Acquisition & Cache Manager

Guarantees a usable local dataset file before a store is opened:
explicit path > existing cache > bundled copies > download.

Preparation is single-flighted: concurrent callers share one in-flight task
and observe the same outcome. The slot is cleared when the task finishes so
a later force_fresh call starts a new cycle.
"""
import asyncio
import gzip
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import httpx

from ..config import Config, DATABASE_FILENAME
from ..core.errors import DatabaseUnavailableError, DownloadError, RedirectLimitError

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent.parent
PROJECT_ROOT = PACKAGE_DIR.parent.parent
CHUNK_SIZE = 64 * 1024


def default_uncompressed_paths() -> List[Path]:
    """Uncompressed dataset locations in order of preference."""
    return [
        PROJECT_ROOT / "db" / DATABASE_FILENAME,   # development tree
        PACKAGE_DIR / "db" / DATABASE_FILENAME,    # installed package data
        Path.cwd() / "db" / DATABASE_FILENAME,     # current working directory
    ]


def default_compressed_paths() -> List[Path]:
    """Compressed (.gz) dataset locations in order of preference."""
    gz_name = f"{DATABASE_FILENAME}.gz"
    return [
        PROJECT_ROOT / "dist" / "db" / gz_name,
        PACKAGE_DIR / "db" / gz_name,
        Path.cwd() / "db" / gz_name,
    ]


def _write_atomically(destination: Path, writer: Callable[[object], None]) -> None:
    """Write through a temp file in the destination directory, then os.replace it into place."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp = tempfile.NamedTemporaryFile(
        dir=destination.parent, prefix=f".{destination.name}.", suffix=".tmp", delete=False
    )
    try:
        with tmp:
            writer(tmp)
        os.replace(tmp.name, destination)
    except BaseException:
        Path(tmp.name).unlink(missing_ok=True)
        raise


def copy_database(source: Path, destination: Path) -> None:
    def writer(out):
        with open(source, "rb") as src:
            shutil.copyfileobj(src, out, CHUNK_SIZE)

    _write_atomically(destination, writer)
    logger.debug(f"Copied database {source} -> {destination}")


def decompress_database(source: Path, destination: Path) -> None:
    def writer(out):
        with gzip.open(source, "rb") as src:
            shutil.copyfileobj(src, out, CHUNK_SIZE)

    _write_atomically(destination, writer)
    logger.debug(f"Decompressed database {source} -> {destination}")


async def fetch_snapshot(
    client: httpx.AsyncClient,
    url: str,
    destination: Path,
    max_redirects: int = 5,
) -> None:
    """
    Stream `url` into `destination`, following at most `max_redirects` redirects.

    Raises:
        RedirectLimitError: more than `max_redirects` redirects
        DownloadError: any non-200 final response
        httpx.HTTPError: transport failures (wrapped by callers)
    """
    current = url
    for _ in range(max_redirects + 1):
        async with client.stream("GET", current) as response:
            if response.is_redirect:
                current = str(response.url.join(response.headers["location"]))
                logger.debug(f"Following redirect to {current}")
                continue
            if response.status_code != 200:
                raise DownloadError(
                    f"Failed to download database. HTTP status: {response.status_code}",
                    url=current,
                )
            out = await asyncio.to_thread(open, destination, "wb")
            try:
                async for chunk in response.aiter_bytes(CHUNK_SIZE):
                    await asyncio.to_thread(out.write, chunk)
            finally:
                await asyncio.to_thread(out.close)
            return
    raise RedirectLimitError(
        f"Too many redirects while downloading database (limit {max_redirects})",
        url=url,
    )


async def download_file(
    url: str,
    destination: Path,
    timeout: float = 60.0,
    max_redirects: int = 5,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> None:
    """Download with a bounded timeout; transport failures become DownloadError."""
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=False, transport=transport) as client:
            await fetch_snapshot(client, url, destination, max_redirects)
    except DownloadError:
        raise
    except httpx.HTTPError as e:
        raise DownloadError(f"Failed to download database from {url}: {e}", url=url) from e


class DatabaseCacheManager:
    """
    Produces the path of a ready local dataset file.

    Attributes:
        config: acquisition settings (URL, cache dir, timeout, download switch)
        download_attempts: number of download cycles started by this manager
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        uncompressed_paths: Optional[Sequence[Path]] = None,
        compressed_paths: Optional[Sequence[Path]] = None,
    ):
        self.config = config or Config.from_env()
        self.transport = transport
        self._uncompressed_paths = uncompressed_paths
        self._compressed_paths = compressed_paths
        self._inflight: Optional[asyncio.Task] = None
        self.download_attempts = 0

    @property
    def cache_path(self) -> Path:
        return self.config.cache_path

    @property
    def is_ready(self) -> bool:
        return self.cache_path.exists()

    @property
    def preparing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def ensure_database(self, database_path: Optional[str] = None, force_fresh: bool = False) -> str:
        """
        Return a path to a ready dataset file. Safe under concurrent invocation.

        Raises:
            DatabaseUnavailableError: nothing local and downloads disabled, or local copy failed
            DownloadError: the snapshot could not be fetched
        """
        if database_path:
            logger.debug(f"Using explicitly provided database path {database_path}")
            return database_path

        if not force_fresh and self.is_ready:
            logger.debug(f"Using cached database {self.cache_path}")
            return str(self.cache_path)

        loop = asyncio.get_running_loop()
        if self._inflight is None or self._inflight.get_loop() is not loop:
            self._inflight = loop.create_task(self._prepare())
        await asyncio.shield(self._inflight)
        return str(self.cache_path)

    async def _prepare(self) -> None:
        try:
            await self._prepare_database()
        finally:
            self._inflight = None

    async def _prepare_database(self) -> None:
        uncompressed = self._uncompressed_paths if self._uncompressed_paths is not None else default_uncompressed_paths()
        compressed = self._compressed_paths if self._compressed_paths is not None else default_compressed_paths()
        logger.debug(f"Preparing database at {self.cache_path}")

        try:
            for candidate in uncompressed:
                if Path(candidate).exists():
                    logger.info(f"Copying uncompressed database {candidate} to cache")
                    await asyncio.to_thread(copy_database, Path(candidate), self.cache_path)
                    return

            for candidate in compressed:
                if Path(candidate).exists():
                    logger.info(f"Decompressing database {candidate} to cache")
                    await asyncio.to_thread(decompress_database, Path(candidate), self.cache_path)
                    return
        except (OSError, EOFError, gzip.BadGzipFile) as e:
            logger.error(f"Failed to prepare database: {e}")
            raise DatabaseUnavailableError(f"Failed to prepare database: {e}") from e

        if self.config.DISABLE_DB_DOWNLOAD:
            logger.error("No database files found and automatic download disabled via CORGI_DISABLE_DB_DOWNLOAD")
            raise DatabaseUnavailableError(
                "Database file not found and automatic download is disabled. "
                "Provide a database_path option when creating the decoder."
            )

        url = self.config.DB_DOWNLOAD_URL
        logger.warning(f"No database files found locally. Attempting download from {url}")
        await self._download_and_prepare(url)

    async def _download_and_prepare(self, url: str) -> None:
        self.download_attempts += 1
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        compressed = self.cache_path.with_name(self.cache_path.name + ".gz")
        try:
            await download_file(
                url,
                compressed,
                timeout=self.config.DOWNLOAD_TIMEOUT,
                max_redirects=self.config.MAX_REDIRECTS,
                transport=self.transport,
            )
            await asyncio.to_thread(decompress_database, compressed, self.cache_path)
            logger.info(f"Database downloaded and cached at {self.cache_path}")
        except DownloadError as e:
            logger.error(f"Database download failed from {url}: {e}")
            raise
        except (OSError, EOFError, gzip.BadGzipFile) as e:
            logger.error(f"Downloaded database could not be decompressed: {e}")
            raise DownloadError(
                f"Failed to download database automatically from {url}. "
                "Provide a database_path option or set CORGI_DB_URL to a reachable file.",
                url=url,
            ) from e
        finally:
            try:
                compressed.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to remove temporary compressed database file {compressed}: {e}")


# Process-wide manager
_cache_manager: Optional[DatabaseCacheManager] = None


def get_cache_manager() -> DatabaseCacheManager:
    global _cache_manager
    if _cache_manager is None:
        _cache_manager = DatabaseCacheManager()
    return _cache_manager


def reset_cache_manager() -> None:
    global _cache_manager
    _cache_manager = None
