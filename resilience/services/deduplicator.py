"""
RequestDeduplicator - Coalesces concurrent loads of the same cache key.

When several coroutines miss the cache on the same key at once,
only the first one runs the loader; the rest await its task.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class RequestDeduplicator:
    """
    Deduplicates concurrent async loads by key.

    Usage:
        dedup = RequestDeduplicator()

        product = await dedup.dedupe(
            key="products:42",
            request_fn=lambda: backend.fetch_product(42),
        )
    """

    def __init__(self, debug: bool = False):
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._debug = debug
        self.total = 0
        self.deduplicated = 0

    async def dedupe(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Run ``request_fn`` unless a load for ``key`` is already in flight,
        in which case wait for that load's result (or error) instead.
        """
        task = self._in_flight.get(key)
        if task is not None:
            self.deduplicated += 1
            self._log(f"JOIN: {key[:50]}")
        else:
            self.total += 1
            self._log(f"NEW: {key[:50]}")
            task = asyncio.ensure_future(request_fn())
            self._in_flight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))

        # shield: one cancelled waiter must not cancel the shared load
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
            self._log(f"DONE: {key[:50]}")

    def cancel_all(self) -> int:
        """Cancel all in-flight loads."""
        count = len(self._in_flight)
        for task in self._in_flight.values():
            task.cancel()
        self._in_flight.clear()
        if count:
            self._log(f"CANCEL_ALL: {count} loads cancelled")
        return count

    def get_in_flight_keys(self) -> list[str]:
        """Get keys of all in-flight loads."""
        return list(self._in_flight.keys())

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[Deduplicator] {message}")
