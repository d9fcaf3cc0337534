"""
Circuit breakers for remote endpoints that keep failing.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict

from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenException(Exception):
    """The breaker is open and the call was not attempted."""


class CircuitBreaker:
    """Stop calling an endpoint after ``failure_threshold`` consecutive failures.

    After ``recovery_timeout`` seconds one trial call is let through
    (half-open) and other callers are refused until it settles. Its success
    closes the breaker, its failure reopens it for another full timeout.
    """

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 60.0,
                 name: str = "default",
                 clock: Callable[[], float] = time.time):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self.logger = get_logger(f"circuit_breaker.{name}")
        self._clock = clock

        self._state = CircuitBreakerState.CLOSED
        self._failures = 0
        self._successes = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    def allow(self) -> bool:
        """Whether a call may go ahead now."""
        if self._state is CircuitBreakerState.CLOSED:
            return True
        if self._state is CircuitBreakerState.OPEN:
            if self._clock() - self._opened_at < self.recovery_timeout:
                return False
            self._state = CircuitBreakerState.HALF_OPEN
        if self._trial_in_flight:
            return False

        self._trial_in_flight = True
        self.logger.info("Trial call allowed", name=self.name)
        return True

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await ``func`` unless the breaker is open."""
        if not self.allow():
            raise CircuitBreakerOpenException(f"Circuit breaker '{self.name}' is open")

        trial = self._state is CircuitBreakerState.HALF_OPEN
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        finally:
            if trial:
                self._trial_in_flight = False

        self.record_success()
        return result

    def record_success(self):
        if self._state is CircuitBreakerState.HALF_OPEN:
            self.logger.info("Circuit closed after trial call", name=self.name)
        self._state = CircuitBreakerState.CLOSED
        self._failures = 0
        self._successes += 1

    def record_failure(self):
        self._failures += 1
        self._successes = 0

        trial_failed = self._state is CircuitBreakerState.HALF_OPEN
        if trial_failed or self._failures >= self.failure_threshold:
            if self._state is not CircuitBreakerState.OPEN:
                self.logger.warning(
                    "Circuit opened",
                    name=self.name,
                    failure_count=self._failures,
                    threshold=self.failure_threshold
                )
            self._state = CircuitBreakerState.OPEN
            self._opened_at = self._clock()

    def is_open(self) -> bool:
        return self._state is CircuitBreakerState.OPEN

    def get_state(self) -> Dict[str, Any]:
        """Snapshot for logs and the registries endpoint."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failures,
            "success_count": self._successes,
            "opened_at": self._opened_at if self.is_open() else None,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }


class CircuitBreakerManager:
    """One breaker per name, created on first use."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}
        self._clock = clock

    def get_circuit_breaker(self,
                            name: str,
                            failure_threshold: int = 5,
                            recovery_timeout: float = 60.0) -> CircuitBreaker:
        breaker = self.circuit_breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(failure_threshold, recovery_timeout, name, self._clock)
            self.circuit_breakers[name] = breaker
        return breaker

    def get_all_states(self) -> Dict[str, Dict[str, Any]]:
        return {name: breaker.get_state() for name, breaker in self.circuit_breakers.items()}
