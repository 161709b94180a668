"""Loader helpers for ``CacheManager.warm``."""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any


Loader = Callable[[], Awaitable[Any] | Any]


async def call_loader(loader: Loader) -> Any:
    """Invoke a loader that may be synchronous or return an awaitable."""
    result = loader()
    if inspect.isawaitable(result):
        result = await result
    return result


def with_timeout(loader: Loader, seconds: float) -> Callable[[], Awaitable[Any]]:
    """Wrap a loader so it fails with ``asyncio.TimeoutError`` after ``seconds``.

    The timeout belongs to the caller of ``warm``; the cache manager wraps the
    resulting timeout in ``LoaderTimeoutError`` and releases the single-flight
    slot so the next call can retry.
    """

    async def timed_loader() -> Any:
        return await asyncio.wait_for(call_loader(loader), timeout=seconds)

    timed_loader.timeout_seconds = seconds  # type: ignore[attr-defined]
    return timed_loader
