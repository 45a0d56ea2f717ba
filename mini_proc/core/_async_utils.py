"""Internal async helpers shared by async modules."""

from __future__ import annotations

import inspect
from typing import Any


async def _maybe_await(value: Any) -> Any:
    """Await awaitables and return non-awaitable values unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


def _close_resource(resource: Any) -> None:
    """Call `close()` on DB-API style objects that expose it."""
    close = getattr(resource, "close", None)
    if callable(close):
        close()


async def _aclose_resource(resource: Any) -> None:
    """Async variant of `_close_resource` for sync or async drivers."""
    close = getattr(resource, "close", None)
    if callable(close):
        await _maybe_await(close())
