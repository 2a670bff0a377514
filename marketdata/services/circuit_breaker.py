"""
CircuitBreaker - Stops calling a failing upstream until it looks healthy again.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Upstream is failing, requests are blocked
- HALF_OPEN: Cool-down elapsed, probing for recovery

Transitions:
- CLOSED → OPEN: When failure_threshold consecutive failures are recorded
- OPEN → HALF_OPEN: In allow_request(), once cool_down has passed since the last failure
- HALF_OPEN → CLOSED: On successful request
- HALF_OPEN → OPEN: On failed request
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from loguru import logger

from marketdata.utils import Clock, utcnow


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half-open"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Consecutive failures before opening
    cool_down: timedelta = timedelta(seconds=60)  # Time since last failure before half-open


@dataclass(frozen=True)
class CircuitBreakerState:
    """Point-in-time snapshot of a breaker."""

    state: CircuitState
    consecutive_failures: int
    last_failure_at: datetime | None


class CircuitBreaker:
    """
    Circuit breaker for a single upstream service.

    Usage:
        cb = CircuitBreaker("property24")

        if not cb.allow_request():
            raise CircuitOpen(...)

        try:
            result = await origin.fetch(...)
            cb.record_success()
            return result
        except OriginError:
            cb.record_failure()
            raise
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Clock = utcnow,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: datetime | None = None
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Current state. Never transitions on its own; see allow_request()."""
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failure_count

    def allow_request(self) -> bool:
        """Check if a request is allowed, moving OPEN → HALF_OPEN after cool-down."""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if self._cool_down_elapsed():
                    self._state = CircuitState.HALF_OPEN
                    logger.info(
                        f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN"
                    )
                    return True
                return False

            # HALF_OPEN: let probes through, the next outcome decides
            return True

    def record_success(self) -> None:
        """Record a successful request."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._close()

    def record_failure(self) -> None:
        """Record a failed request."""
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                # Any failure in half-open reopens the circuit
                self._open()
            elif self._state == CircuitState.CLOSED:
                if self._failure_count >= self.config.failure_threshold:
                    self._open()

    def _cool_down_elapsed(self) -> bool:
        if self._last_failure_time is None:
            return True
        return self._clock() - self._last_failure_time > self.config.cool_down

    def _open(self) -> None:
        """Transition to OPEN state."""
        self._state = CircuitState.OPEN
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED after {self._failure_count} failures"
        )

    def _close(self) -> None:
        """Transition to CLOSED state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._last_failure_time = None
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until the circuit may move to half-open."""
        if self._state != CircuitState.OPEN or not self._last_failure_time:
            return None

        reset_at = self._last_failure_time + self.config.cool_down
        remaining = (reset_at - self._clock()).total_seconds()
        return max(0.0, remaining)

    def snapshot(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(
                state=self._state,
                consecutive_failures=self._failure_count,
                last_failure_at=self._last_failure_time,
            )

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        snap = self.snapshot()
        return {
            "service_id": self.service_id,
            "state": snap.state.value,
            "failure_count": snap.consecutive_failures,
            "last_failure": (
                snap.last_failure_at.isoformat() if snap.last_failure_at else None
            ),
            "time_until_reset": self.get_time_until_reset(),
        }
