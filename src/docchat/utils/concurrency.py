"""Async helpers: capped fan-out and single-flight execution."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, Iterable, List, Optional, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def bounded_gather(
    func: Callable[[T], Awaitable[R]],
    items: Iterable[T],
    *,
    limit: int,
    return_exceptions: bool = False,
) -> List[R]:
    """Run ``func`` over ``items`` with at most ``limit`` calls in flight.

    Results come back in input order, like ``asyncio.gather``.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")
    semaphore = asyncio.Semaphore(limit)

    async def _run(item: T) -> R:
        async with semaphore:
            return await func(item)

    return await asyncio.gather(
        *(_run(item) for item in items), return_exceptions=return_exceptions
    )


class SingleFlight(Generic[T]):
    """Share one in-flight execution of a coroutine among concurrent callers.

    The first call starts the work; calls arriving before it finishes await
    the same task. Once it has finished, later calls get the same result (or
    exception) without running anything again.
    """

    def __init__(self) -> None:
        self._task: Optional[asyncio.Task[T]] = None

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        if self._task is None:
            self._task = asyncio.ensure_future(factory())
        # A cancelled waiter must not cancel the shared work.
        return await asyncio.shield(self._task)
