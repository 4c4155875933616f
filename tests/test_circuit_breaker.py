"""Tests for the per-handler circuit breaker state machine."""

from __future__ import annotations

import pytest

from switchboard.delegation import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms / 1000.0


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_breaker(clock: FakeClock, **config) -> CircuitBreaker:
    return CircuitBreaker("billing", CircuitBreakerConfig(**config), clock)


# ═══════════════════════════════════════════════════════════════════════════
# State transitions
# ═══════════════════════════════════════════════════════════════════════════


class TestTransitions:
    def test_starts_closed(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.allow_request() is True

    def test_opens_at_threshold(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock, failure_threshold=3)
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.allow_request() is False

    def test_success_resets_failure_count(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock, failure_threshold=2)
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 1

    def test_half_open_after_recovery_timeout(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock, failure_threshold=1, recovery_timeout_ms=1000)
        breaker.record_failure()

        clock.advance(400)
        assert breaker.state == CircuitState.OPEN
        assert breaker.retry_after_ms == pytest.approx(600)

        clock.advance(700)
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.retry_after_ms == 0.0

    def test_half_open_admits_limited_trials(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock, failure_threshold=1, recovery_timeout_ms=10, half_open_max=1)
        breaker.record_failure()
        clock.advance(15)

        assert breaker.allow_request() is True
        assert breaker.allow_request() is False

    def test_trial_success_closes(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock, failure_threshold=1, recovery_timeout_ms=10)
        breaker.record_failure()
        clock.advance(15)
        breaker.allow_request()

        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_trial_failure_reopens(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock, failure_threshold=3, recovery_timeout_ms=10)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(15)
        breaker.allow_request()

        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.retry_after_ms == pytest.approx(10)

    def test_released_trial_slot_is_reusable(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock, failure_threshold=1, recovery_timeout_ms=10)
        breaker.record_failure()
        clock.advance(15)
        assert breaker.allow_request() is True

        breaker.release()

        assert breaker.allow_request() is True

    def test_reset(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock, failure_threshold=1)
        breaker.record_failure()
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.allow_request() is True

    def test_to_dict(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock, failure_threshold=1, recovery_timeout_ms=500)
        breaker.record_failure()
        assert breaker.to_dict() == {"state": "open", "failure_count": 1, "retry_after_ms": 500.0}


# ═══════════════════════════════════════════════════════════════════════════
# Configuration and registry
# ═══════════════════════════════════════════════════════════════════════════


class TestConfig:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"failure_threshold": 0},
            {"recovery_timeout_ms": -1},
            {"half_open_max": 0},
        ],
    )
    def test_invalid_config(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            CircuitBreakerConfig(**kwargs)


class TestRegistry:
    def test_one_breaker_per_handler(self, clock: FakeClock) -> None:
        breakers = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1), clock=clock)
        breakers.get("a").record_failure()

        assert breakers.get("a") is breakers.get("a")
        assert breakers.get("a").state == CircuitState.OPEN
        assert breakers.get("b").state == CircuitState.CLOSED

    def test_disabled_registry_hands_out_nothing(self) -> None:
        assert CircuitBreakerRegistry(enabled=False).get("a") is None

    def test_states_and_reset(self, clock: FakeClock) -> None:
        breakers = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1), clock=clock)
        breakers.get("a").record_failure()
        breakers.get("b")
        assert breakers.states()["a"]["state"] == "open"
        assert breakers.states()["b"]["state"] == "closed"

        breakers.reset("a")
        assert breakers.states()["a"]["state"] == "closed"

        breakers.get("b").record_failure()
        breakers.reset()
        assert {s["state"] for s in breakers.states().values()} == {"closed"}
