"""
Tests for circuit breaker functionality.

Tests cover:
1. State transitions (CLOSED -> OPEN -> HALF_OPEN -> CLOSED)
2. Core methods (record_success, record_failure, allow_request)
3. Cool-down measured from the last failure
4. Status reporting and manual reset
"""

from datetime import timedelta

from marketdata.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)


def open_breaker(cb: CircuitBreaker) -> None:
    for _ in range(cb.config.failure_threshold):
        cb.record_failure()


class TestCircuitState:
    """Tests for CircuitState enum."""

    def test_circuit_states_exist(self):
        assert CircuitState.CLOSED.value == "closed"
        assert CircuitState.OPEN.value == "open"
        assert CircuitState.HALF_OPEN.value == "half-open"

    def test_default_config(self):
        config = CircuitBreakerConfig()
        assert config.failure_threshold == 5
        assert config.cool_down == timedelta(seconds=60)


class TestStateTransitions:
    """Tests for circuit breaker state transitions."""

    def test_starts_closed_and_allows(self, clock):
        cb = CircuitBreaker("p24", clock=clock)
        assert cb.state == CircuitState.CLOSED
        assert cb.allow_request() is True

    def test_closed_to_open_after_five_failures(self, clock):
        """Four failures keep it closed, the fifth opens it."""
        cb = CircuitBreaker("p24", clock=clock)

        for _ in range(4):
            cb.record_failure()
        assert cb.state == CircuitState.CLOSED
        assert cb.allow_request() is True

        cb.record_failure()
        assert cb.state == CircuitState.OPEN
        assert cb.allow_request() is False

    def test_open_stays_open_during_cool_down(self, clock):
        cb = CircuitBreaker("p24", clock=clock)
        open_breaker(cb)

        clock.advance(seconds=60)  # not strictly greater than cool-down

        assert cb.allow_request() is False
        assert cb.state == CircuitState.OPEN

    def test_open_to_half_open_after_cool_down(self, clock):
        """The first allow_request after cool-down moves to HALF_OPEN and is allowed."""
        cb = CircuitBreaker("p24", clock=clock)
        open_breaker(cb)

        clock.advance(seconds=61)

        assert cb.state == CircuitState.OPEN  # reading state never transitions
        assert cb.allow_request() is True
        assert cb.state == CircuitState.HALF_OPEN

    def test_half_open_allows_further_probes(self, clock):
        cb = CircuitBreaker("p24", clock=clock)
        open_breaker(cb)
        clock.advance(seconds=61)
        cb.allow_request()

        assert cb.allow_request() is True

    def test_half_open_to_closed_on_success(self, clock):
        """Success in HALF_OPEN closes the breaker and zeroes the failure count."""
        cb = CircuitBreaker("p24", clock=clock)
        open_breaker(cb)
        clock.advance(seconds=61)
        cb.allow_request()

        cb.record_success()

        assert cb.state == CircuitState.CLOSED
        assert cb.consecutive_failures == 0

    def test_half_open_to_open_on_failure(self, clock):
        cb = CircuitBreaker("p24", clock=clock)
        open_breaker(cb)
        clock.advance(seconds=61)
        cb.allow_request()

        cb.record_failure()

        assert cb.state == CircuitState.OPEN
        assert cb.allow_request() is False

    def test_cool_down_measured_from_last_failure(self, clock):
        """A failure recorded while open pushes the half-open time back."""
        cb = CircuitBreaker("p24", clock=clock)
        open_breaker(cb)

        clock.advance(seconds=40)
        cb.record_failure()
        clock.advance(seconds=30)

        assert cb.allow_request() is False

        clock.advance(seconds=31)
        assert cb.allow_request() is True

    def test_success_while_closed_is_noop(self, clock):
        """Success in CLOSED does not reset an in-progress failure count."""
        cb = CircuitBreaker("p24", clock=clock)
        cb.record_failure()
        cb.record_failure()

        cb.record_success()

        assert cb.state == CircuitState.CLOSED
        assert cb.consecutive_failures == 2

    def test_custom_threshold(self, clock):
        cb = CircuitBreaker(
            "p24",
            CircuitBreakerConfig(failure_threshold=2, cool_down=timedelta(seconds=5)),
            clock=clock,
        )
        cb.record_failure()
        cb.record_failure()
        assert cb.state == CircuitState.OPEN

        clock.advance(seconds=6)
        assert cb.allow_request() is True


class TestStatus:
    """Tests for status reporting and reset."""

    def test_time_until_reset(self, clock):
        cb = CircuitBreaker("p24", clock=clock)
        assert cb.get_time_until_reset() is None

        open_breaker(cb)
        clock.advance(seconds=15)

        assert cb.get_time_until_reset() == 45.0

    def test_get_status(self, clock):
        cb = CircuitBreaker("p24", clock=clock)
        open_breaker(cb)

        status = cb.get_status()

        assert status["service_id"] == "p24"
        assert status["state"] == "open"
        assert status["failure_count"] == 5
        assert status["last_failure"] == clock.now.isoformat()

    def test_snapshot(self, clock):
        cb = CircuitBreaker("p24", clock=clock)
        cb.record_failure()

        snap = cb.snapshot()

        assert snap.state == CircuitState.CLOSED
        assert snap.consecutive_failures == 1
        assert snap.last_failure_at == clock.now

    def test_manual_reset(self, clock):
        cb = CircuitBreaker("p24", clock=clock)
        open_breaker(cb)

        cb.reset()

        assert cb.state == CircuitState.CLOSED
        assert cb.consecutive_failures == 0
        assert cb.allow_request() is True
