"""Concurrency limiting for export-size probing.

``shared_limiter`` hands out one ``ConcurrencyLimiter`` per running event
loop, so every export batch in the process shares the same ceiling.
``gather_settled`` runs awaitables that share one install directory.
"""

from __future__ import annotations

import asyncio
import weakref
from typing import Awaitable, TypeVar

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Concurrency limiter
# ---------------------------------------------------------------------------


class ConcurrencyLimiter:
    """Async context manager admitting at most *max_concurrent* holders.

    Usage::

        async with shared_limiter(settings.EXPORT_CONCURRENCY):
            await build_batch()
    """

    __slots__ = ("_semaphore", "__weakref__")

    def __init__(self, max_concurrent: int) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def __aenter__(self) -> None:
        await self._semaphore.acquire()

    async def __aexit__(self, *exc_info: object) -> None:
        self._semaphore.release()


# ---------------------------------------------------------------------------
# Process-wide limiter
# ---------------------------------------------------------------------------

_LIMITERS: weakref.WeakKeyDictionary[
    asyncio.AbstractEventLoop, ConcurrencyLimiter
] = weakref.WeakKeyDictionary()


def shared_limiter(max_concurrent: int) -> ConcurrencyLimiter:
    """Return the limiter shared by every caller on the running loop.

    The first call on a loop fixes its ceiling; later calls reuse it.
    Semaphores are loop-bound, hence one limiter per loop.
    """
    loop = asyncio.get_running_loop()
    limiter = _LIMITERS.get(loop)
    if limiter is None:
        limiter = ConcurrencyLimiter(max_concurrent)
        _LIMITERS[loop] = limiter
    return limiter


# ---------------------------------------------------------------------------
# Settled gather
# ---------------------------------------------------------------------------


async def gather_settled(*aws: Awaitable[T]) -> list[T]:
    """Like ``asyncio.gather`` but waits for every awaitable to finish.

    The first failure, in argument order, is raised once all of them
    have settled.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


__all__ = [
    "ConcurrencyLimiter",
    "gather_settled",
    "shared_limiter",
]
