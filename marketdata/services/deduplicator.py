"""
RequestDeduplicator - Single-flight for concurrent origin fetches.

When several callers miss the cache for the same key at once, only one
upstream request is made and every caller receives its outcome (result or
exception).
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class RequestDeduplicator:
    """
    Deduplicates concurrent async requests by key.

    The shared request runs in its own task. Waiters are shielded from it, so
    a caller that is cancelled stops waiting without cancelling the fetch the
    other callers depend on.

    Usage:
        dedup = RequestDeduplicator()

        record = await dedup.dedupe(
            key=cache_key,
            request_fn=lambda: origin.fetch(location, property_type, period),
        )
    """

    def __init__(self, debug: bool = False):
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._lock = asyncio.Lock()
        self._debug = debug
        self._stats = DeduplicatorStats()

    async def dedupe(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """Run ``request_fn`` unless a request for ``key`` is already in flight."""
        async with self._lock:
            task = self._in_flight.get(key)
            if task is not None:
                self._stats.deduplicated += 1
                self._log(f"DEDUPE: joining in-flight request {key}")
            else:
                self._stats.total += 1
                self._log(f"NEW: starting request {key}")
                task = asyncio.create_task(self._run(key, request_fn))
                self._in_flight[key] = task

        return await asyncio.shield(task)

    async def _run(self, key: str, request_fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await request_fn()
        finally:
            async with self._lock:
                self._in_flight.pop(key, None)
            self._log(f"DONE: {key}")

    async def cancel_all(self) -> int:
        """Cancel all in-flight requests."""
        async with self._lock:
            tasks = list(self._in_flight.values())
            self._in_flight.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            self._log(f"CANCEL_ALL: {len(tasks)} requests cancelled")
        return len(tasks)

    def get_in_flight_count(self) -> int:
        return len(self._in_flight)

    def get_stats(self) -> "DeduplicatorStats":
        """Get deduplication statistics."""
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[Deduplicator] {message}")


class DeduplicatorStats:
    """Statistics for request deduplication."""

    def __init__(self):
        self.total: int = 0  # Upstream requests actually made
        self.deduplicated: int = 0  # Callers that joined an in-flight request
        self.in_flight: int = 0

    @property
    def dedup_rate(self) -> float:
        total = self.total + self.deduplicated
        if total == 0:
            return 0.0
        return self.deduplicated / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total,
            "deduplicated": self.deduplicated,
            "in_flight": self.in_flight,
            "dedup_rate": f"{self.dedup_rate:.2%}",
        }
