"""
Edge database adapter (Cloudflare D1 style binding).

The binding is any object exposing
    binding.prepare(sql).bind(*params).all()
where `all()` is awaitable and returns either an object with a `results`
attribute or a mapping with a "results" key.
"""
import logging
from typing import Any, List, Mapping, Protocol, Sequence

from ..core.errors import BackendError
from .base import Row, SqlDatasetStore

logger = logging.getLogger(__name__)


class PreparedStatement(Protocol):
    def bind(self, *params: Any) -> "PreparedStatement": ...

    async def all(self) -> Any: ...


class D1Binding(Protocol):
    def prepare(self, sql: str) -> PreparedStatement: ...


def _results(payload: Any) -> List[Any]:
    if isinstance(payload, Mapping):
        return list(payload.get("results") or [])
    return list(getattr(payload, "results", None) or [])


class D1Store(SqlDatasetStore):
    """Dataset store over a managed edge database binding."""

    def __init__(self, binding: D1Binding):
        self.binding = binding

    async def _query(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        try:
            payload = await self.binding.prepare(sql).bind(*params).all()
        except Exception as e:
            raise BackendError(f"Edge database query failed: {e}") from e
        return [dict(row) for row in _results(payload)]

    async def close(self) -> None:
        # The binding's lifetime belongs to the host runtime
        logger.debug("D1 store released")
