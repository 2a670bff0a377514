"""
RateLimiter - Fixed-window request counter per identifier.

A window opens on the first request for an identifier and lasts ``window``.
Inside the window at most ``max_requests`` calls are allowed; once the window
has elapsed the next call starts a fresh one with count=1.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from marketdata.services.state import SynchronizedMap
from marketdata.utils import Clock, utcnow


@dataclass(frozen=True)
class RateLimitState:
    """Counter for a single identifier."""

    identifier: str
    count: int
    window_reset_at: datetime


class RateLimiter:
    """
    In-memory fixed-window rate limiter.

    Usage:
        limiter = RateLimiter(max_requests=100, window=timedelta(hours=1))

        if not limiter.allow(location):
            raise RateLimitExceeded(location, limiter.retry_after(location))
    """

    def __init__(
        self,
        max_requests: int = 100,
        window: timedelta = timedelta(hours=1),
        clock: Clock = utcnow,
        states: SynchronizedMap[str, RateLimitState] | None = None,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._states = states if states is not None else SynchronizedMap()

    def allow(self, identifier: str) -> bool:
        """Count a request for ``identifier`` and report whether it may proceed."""
        now = self._clock()

        def step(current: RateLimitState | None) -> tuple[RateLimitState, bool]:
            if current is None or now >= current.window_reset_at:
                return (
                    RateLimitState(
                        identifier=identifier,
                        count=1,
                        window_reset_at=now + self.window,
                    ),
                    True,
                )
            if current.count >= self.max_requests:
                return current, False
            return replace(current, count=current.count + 1), True

        allowed = self._states.compute(identifier, step)
        if not allowed:
            logger.debug(f"Rate limit reached for '{identifier}'")
        return allowed

    def retry_after(self, identifier: str) -> float | None:
        """Seconds until the identifier's current window resets."""
        state = self._states.get(identifier)
        if state is None:
            return None
        remaining = (state.window_reset_at - self._clock()).total_seconds()
        return max(0.0, remaining)

    def get_state(self, identifier: str) -> RateLimitState | None:
        return self._states.get(identifier)

    def reset(self, identifier: str | None = None) -> None:
        """Forget one identifier, or all of them."""
        if identifier is None:
            self._states.clear()
        else:
            self._states.pop(identifier)

    def get_status(self) -> dict[str, Any]:
        return {
            "max_requests": self.max_requests,
            "window_seconds": self.window.total_seconds(),
            "tracked_identifiers": len(self._states),
        }
