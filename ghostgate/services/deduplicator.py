"""
RequestDeduplicator - lets concurrent cache misses share one upstream call.

When several coroutines miss the cache for the same key at the same time,
only the first reaches the upstream; the others await its task.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from loguru import logger

T = TypeVar("T")


class RequestDeduplicator:
    """
    Deduplicates concurrent async requests by key.

    Usage:
        dedup = RequestDeduplicator()
        post = await dedup.dedupe("ghost/post/1", lambda: fetch_post("1"))
    """

    def __init__(self, debug: bool = False):
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._debug = debug
        self.total = 0  # Requests that reached request_fn
        self.deduplicated = 0  # Requests that joined an in-flight task

    async def dedupe(self, key: str, request_fn: Callable[[], Awaitable[T]]) -> T:
        """
        Execute ``request_fn`` unless a request for ``key`` is already in flight.

        Every waiter receives the same result or the same exception.
        """
        task = self._in_flight.get(key)
        if task is not None:
            self.deduplicated += 1
            self._log(f"DEDUPE: Waiting for in-flight request: {key[:50]}")
        else:
            self.total += 1
            self._log(f"NEW: Starting request: {key[:50]}")
            task = asyncio.ensure_future(self._execute_and_cleanup(key, request_fn))
            self._in_flight[key] = task

        # Shield so one cancelled waiter does not cancel the shared request.
        return await asyncio.shield(task)

    async def _execute_and_cleanup(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """Execute request and clean up when done."""
        try:
            return await request_fn()
        finally:
            self._in_flight.pop(key, None)
            self._log(f"DONE: Request completed: {key[:50]}")

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[Deduplicator] {message}")
