"""Unit tests for CircuitBreaker state transitions."""

from datetime import timedelta

import pytest

from aem_mcp.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from tests.conftest import FakeClock


@pytest.fixture()
def breaker(clock: FakeClock) -> CircuitBreaker:
    config = CircuitBreakerConfig(failure_threshold=3, cooldown_period=timedelta(seconds=30))
    return CircuitBreaker("aem.test", config, clock=clock)


def _trip(breaker: CircuitBreaker) -> None:
    for _ in range(breaker.config.failure_threshold):
        breaker.record_failure()


class TestCircuitBreaker:
    def test_starts_closed(self, breaker: CircuitBreaker) -> None:
        assert breaker.state == CircuitState.CLOSED
        assert breaker.should_allow() is True

    def test_opens_at_threshold(self, breaker: CircuitBreaker) -> None:
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert breaker.should_allow() is False

    def test_success_resets_consecutive_failures(self, breaker: CircuitBreaker) -> None:
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 2

    def test_half_open_after_cooldown(self, breaker: CircuitBreaker, clock: FakeClock) -> None:
        _trip(breaker)
        clock.advance(29)
        assert breaker.state == CircuitState.OPEN
        assert breaker.get_time_until_reset() == pytest.approx(1.0)

        clock.advance(1)
        assert breaker.state == CircuitState.HALF_OPEN

    def test_half_open_admits_single_trial(self, breaker: CircuitBreaker, clock: FakeClock) -> None:
        _trip(breaker)
        clock.advance(30)

        assert breaker.should_allow() is True
        assert breaker.should_allow() is False

    def test_trial_success_closes(self, breaker: CircuitBreaker, clock: FakeClock) -> None:
        _trip(breaker)
        clock.advance(30)
        breaker.should_allow()

        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_trial_failure_reopens_with_fresh_cooldown(
        self, breaker: CircuitBreaker, clock: FakeClock
    ) -> None:
        _trip(breaker)
        clock.advance(30)
        breaker.should_allow()

        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.get_time_until_reset() == pytest.approx(30.0)

    def test_released_trial_can_be_claimed_again(
        self, breaker: CircuitBreaker, clock: FakeClock
    ) -> None:
        _trip(breaker)
        clock.advance(30)
        assert breaker.should_allow() is True

        breaker.release_trial()

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.should_allow() is True

    def test_rejections_do_not_count_as_failures(self, breaker: CircuitBreaker) -> None:
        _trip(breaker)
        for _ in range(10):
            breaker.should_allow()
        status = breaker.get_status()
        assert status["failure_count"] == 3
        assert status["rejected"] == 10

    def test_reset(self, breaker: CircuitBreaker) -> None:
        _trip(breaker)
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.should_allow() is True

    def test_status(self, breaker: CircuitBreaker) -> None:
        breaker.record_failure()
        status = breaker.get_status()
        assert status["target"] == "aem.test"
        assert status["state"] == "CLOSED"
        assert status["failure_threshold"] == 3
        assert status["last_failure"] is not None
        assert status["time_until_reset"] is None

    def test_rejects_invalid_threshold(self) -> None:
        with pytest.raises(ValueError):
            CircuitBreaker("x", CircuitBreakerConfig(failure_threshold=0))
