"""
Per-handler circuit breakers.

A handler that keeps raising or timing out is taken out of rotation for a
recovery window instead of being invoked again on every query:

    CLOSED --(failure_threshold consecutive failures)--> OPEN
    OPEN --(recovery_timeout_ms elapsed)--> HALF_OPEN
    HALF_OPEN --(trial succeeds)--> CLOSED
    HALF_OPEN --(trial fails)--> OPEN

Usage:
    breakers = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=3))
    executor = DelegationExecutor(registry, circuit_breakers=breakers)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Callable

from switchboard.logger import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration."""

    failure_threshold: int = 5
    recovery_timeout_ms: float = 30000.0
    half_open_max: int = 1

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {self.failure_threshold}")
        if self.recovery_timeout_ms < 0:
            raise ValueError(
                f"recovery_timeout_ms must be >= 0, got {self.recovery_timeout_ms}"
            )
        if self.half_open_max < 1:
            raise ValueError(f"half_open_max must be >= 1, got {self.half_open_max}")


class CircuitBreaker:
    """Failure counter and state machine for one handler."""

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0
        self._half_open_count = 0

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN to HALF_OPEN once the recovery window passes."""
        if self._state == CircuitState.OPEN and self.retry_after_ms <= 0:
            self._transition(CircuitState.HALF_OPEN)
            self._half_open_count = 0
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def retry_after_ms(self) -> float:
        """Milliseconds until an open circuit admits a trial call."""
        if self._state != CircuitState.OPEN:
            return 0.0
        elapsed_ms = (self._clock() - self._opened_at) * 1000.0
        return max(0.0, self.config.recovery_timeout_ms - elapsed_ms)

    def allow_request(self) -> bool:
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN:
            if self._half_open_count < self.config.half_open_max:
                self._half_open_count += 1
                return True
        return False

    def record_success(self) -> None:
        self._failure_count = 0
        self._half_open_count = 0
        if self._state != CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN:
            self._open()
        elif (
            self._state == CircuitState.CLOSED
            and self._failure_count >= self.config.failure_threshold
        ):
            self._open()

    def release(self) -> None:
        """Give back a half-open trial slot whose call never finished."""
        if self._half_open_count > 0:
            self._half_open_count -= 1

    def reset(self) -> None:
        self._failure_count = 0
        self._half_open_count = 0
        self._state = CircuitState.CLOSED

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": str(self.state),
            "failure_count": self._failure_count,
            "retry_after_ms": round(self.retry_after_ms, 2),
        }

    def _open(self) -> None:
        self._opened_at = self._clock()
        self._half_open_count = 0
        self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            "circuit_state_changed",
            handler_id=self.name,
            from_state=str(old_state),
            to_state=str(new_state),
            failure_count=self._failure_count,
        )


class CircuitBreakerRegistry:
    """
    Lazily created breakers keyed by handler id.

    A disabled registry hands out no breakers, so every call is allowed.
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        enabled: bool = True,
        clock: Clock = time.monotonic,
    ) -> None:
        self.config = config or CircuitBreakerConfig()
        self.enabled = enabled
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, handler_id: str) -> CircuitBreaker | None:
        if not self.enabled:
            return None
        breaker = self._breakers.get(handler_id)
        if breaker is None:
            breaker = CircuitBreaker(handler_id, self.config, self._clock)
            self._breakers[handler_id] = breaker
        return breaker

    def states(self) -> dict[str, dict[str, Any]]:
        return {handler_id: b.to_dict() for handler_id, b in self._breakers.items()}

    def reset(self, handler_id: str | None = None) -> None:
        """Close one breaker, or all of them when `handler_id` is None."""
        if handler_id is None:
            for breaker in self._breakers.values():
                breaker.reset()
        elif handler_id in self._breakers:
            self._breakers[handler_id].reset()
