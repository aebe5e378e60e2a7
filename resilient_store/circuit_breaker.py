"""
Circuit breaker pattern implementation for resilient store calls.

CLOSED -> (failure_threshold failures) -> OPEN -> (reset_timeout elapsed,
evaluated on the next call) -> HALF_OPEN -> (success_threshold successes)
-> CLOSED. Any failure while HALF_OPEN re-opens the circuit.
"""

import math
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, Union

from resilient_store.errors import CircuitOpenError
from resilient_store.logging import get_logger
from resilient_store.metrics import ResilienceMetrics


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """Circuit breaker guarding one logical upstream dependency.

    State only changes in synchronous sections between awaits, so concurrent
    tasks on one event loop need no lock.
    """

    def __init__(self,
                 name: str = "default",
                 failure_threshold: int = 5,
                 reset_timeout: float = 30.0,
                 success_threshold: int = 2,
                 expected_exception: Union[Type[BaseException], Tuple[Type[BaseException], ...]] = Exception,
                 clock: Callable[[], float] = time.time,
                 metrics: Optional[ResilienceMetrics] = None):
        if failure_threshold < 1 or success_threshold < 1:
            raise ValueError("thresholds must be >= 1")
        if reset_timeout < 0:
            raise ValueError("reset_timeout must be >= 0")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.success_threshold = success_threshold
        self.expected_exception = expected_exception
        self.logger = get_logger(f"resilient_store.circuit_breaker.{name}")
        self._clock = clock
        self._metrics = metrics

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._last_failure_at = 0.0
        self._trial_success_count = 0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    def _transition(self, new_state: CircuitBreakerState):
        self._state = new_state
        if self._metrics is not None:
            self._metrics.record_circuit_transition(self.name, new_state.value)

    def _before_call(self) -> bool:
        """Lazily move OPEN -> HALF_OPEN, or reject the call.

        Returns True when this call is the half-open trial.
        """
        if self._state == CircuitBreakerState.CLOSED:
            return False

        if self._state == CircuitBreakerState.OPEN:
            elapsed = self._clock() - self._last_failure_at
            if elapsed < self.reset_timeout:
                remaining = max(1, math.ceil(self.reset_timeout - elapsed))
                raise CircuitOpenError(remaining, self.name)
            self._transition(CircuitBreakerState.HALF_OPEN)
            self._trial_success_count = 0
            self.logger.info("Circuit breaker transitioning to half-open")

        # One trial at a time; concurrent callers are turned away until it settles
        if self._trial_in_flight:
            raise CircuitOpenError(1, self.name)
        self._trial_in_flight = True
        return True

    async def execute(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``operation`` under circuit breaker protection.

        Raises CircuitOpenError without calling ``operation`` while the circuit
        is open and the reset timeout has not elapsed, or while another
        half-open trial call is still running.
        """
        is_trial = self._before_call()

        try:
            result = await operation()
        except self.expected_exception:
            self._on_failure()
            raise
        finally:
            if is_trial:
                self._trial_in_flight = False

        self._on_success()
        return result

    def _on_success(self):
        if self._state == CircuitBreakerState.HALF_OPEN:
            self._trial_success_count += 1
            if self._trial_success_count >= self.success_threshold:
                self._transition(CircuitBreakerState.CLOSED)
                self._failure_count = 0
                self._trial_success_count = 0
                self.logger.info("Circuit breaker reset to CLOSED after successful trial calls")
        else:
            self._failure_count = 0

    def _on_failure(self):
        self._failure_count += 1
        self._last_failure_at = self._clock()

        if self._state == CircuitBreakerState.HALF_OPEN:
            self._transition(CircuitBreakerState.OPEN)
            self.logger.warning("Circuit breaker re-opened, trial call failed")
        elif self._state == CircuitBreakerState.CLOSED and self._failure_count >= self.failure_threshold:
            self._transition(CircuitBreakerState.OPEN)
            self.logger.warning(
                "Circuit breaker opened due to failures",
                failure_count=self._failure_count,
                threshold=self.failure_threshold,
                reset_timeout=self.reset_timeout
            )

    def reset(self):
        """Force the breaker back to CLOSED with cleared counters."""
        self._transition(CircuitBreakerState.CLOSED)
        self._failure_count = 0
        self._trial_success_count = 0
        self._trial_in_flight = False
        self._last_failure_at = 0.0

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "trial_success_count": self._trial_success_count,
            "last_failure_at": self._last_failure_at,
            "failure_threshold": self.failure_threshold,
            "reset_timeout": self.reset_timeout
        }

    def is_open(self) -> bool:
        return self._state == CircuitBreakerState.OPEN

    def is_closed(self) -> bool:
        return self._state == CircuitBreakerState.CLOSED

    def is_half_open(self) -> bool:
        return self._state == CircuitBreakerState.HALF_OPEN


class CircuitBreakerManager:
    """One circuit breaker per logical dependency name."""

    def __init__(self, clock: Callable[[], float] = time.time,
                 metrics: Optional[ResilienceMetrics] = None):
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}
        self._clock = clock
        self._metrics = metrics
        self.logger = get_logger("resilient_store.circuit_breaker_manager")

    def get_breaker(self, name: str, **kwargs) -> CircuitBreaker:
        """Get or create a circuit breaker. ``kwargs`` apply only on creation."""
        if name not in self.circuit_breakers:
            kwargs.setdefault("clock", self._clock)
            kwargs.setdefault("metrics", self._metrics)
            self.circuit_breakers[name] = CircuitBreaker(name=name, **kwargs)
            self.logger.info("Created circuit breaker", name=name)

        return self.circuit_breakers[name]

    def get_all_states(self) -> Dict[str, Dict[str, Any]]:
        return {
            name: cb.get_state()
            for name, cb in self.circuit_breakers.items()
        }

    def reset_all(self):
        for cb in self.circuit_breakers.values():
            cb.reset()
