"""Single-flight cell for coalescing concurrent async operations."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Hold either nothing or one shared pending result.

    The first caller of :meth:`run` starts the operation; callers arriving
    while it is pending await the same future. The cell returns to idle as
    soon as the operation settles, whether it succeeded or failed.

    Waiters are shielded: cancelling one caller does not cancel the shared
    operation, which keeps running for everyone else.
    """

    def __init__(self) -> None:
        self._pending: asyncio.Future[T] | None = None

    @property
    def in_flight(self) -> bool:
        """Return True while an operation is outstanding."""
        return self._pending is not None and not self._pending.done()

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Join the pending operation, or start ``operation`` if idle."""
        future = self._pending
        if future is None or future.done():
            future = asyncio.ensure_future(operation())
            future.add_done_callback(self._settle)
            self._pending = future
        return await asyncio.shield(future)

    def _settle(self, future: asyncio.Future[T]) -> None:
        if not future.cancelled():
            # Mark the error retrieved; every waiter gets it re-raised anyway.
            future.exception()
        if self._pending is future:
            self._pending = None
