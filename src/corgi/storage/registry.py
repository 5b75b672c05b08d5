"""
Backend selection.
The store implementation is chosen once, from configuration, when a decoder is created.
"""
import logging
from typing import Optional

import httpx

from ..config import Config
from ..core.errors import BackendError
from .base import DatasetStore
from .d1_store import D1Binding, D1Store
from .remote_store import RemoteSnapshotStore
from .sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

D1_TOKEN = "d1"

_d1_binding: Optional[D1Binding] = None


def init_d1_adapter(binding: D1Binding) -> None:
    """Register the edge database binding used by `runtime="edge"` decoders."""
    global _d1_binding
    _d1_binding = binding
    logger.info("D1 adapter registered")


def clear_d1_adapter() -> None:
    global _d1_binding
    _d1_binding = None


def is_remote_location(path: Optional[str]) -> bool:
    return bool(path) and path.lower().startswith(("http://", "https://"))


def needs_local_file(runtime: str, database_path: Optional[str]) -> bool:
    """True when the cache manager must produce a file before the store can open."""
    if runtime in ("edge", "browser"):
        return False
    return database_path != D1_TOKEN and not is_remote_location(database_path)


def create_store(
    database_path: Optional[str],
    runtime: str = "node",
    config: Optional[Config] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> DatasetStore:
    """
    Build (but do not open) the store for a runtime/path combination.

    edge or "d1"        -> D1Store over the registered binding
    browser or http(s)  -> RemoteSnapshotStore
    anything else       -> SQLiteStore on a local file
    """
    config = config or Config.from_env()

    if runtime == "edge" or database_path == D1_TOKEN:
        if _d1_binding is None:
            raise BackendError("No D1 binding registered. Call init_d1_adapter(binding) first.")
        return D1Store(_d1_binding)

    if runtime == "browser" or is_remote_location(database_path):
        url = database_path if is_remote_location(database_path) else config.DB_DOWNLOAD_URL
        return RemoteSnapshotStore(
            url,
            timeout=config.DOWNLOAD_TIMEOUT,
            max_redirects=config.MAX_REDIRECTS,
            transport=transport,
        )

    if not database_path:
        raise BackendError("A local database path is required for the node runtime")
    return SQLiteStore(database_path)
