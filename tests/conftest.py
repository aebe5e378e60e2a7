"""
Shared fixtures for resilient store tests.
"""

import pytest

from resilient_store.cache import TTLCache
from resilient_store.circuit_breaker import CircuitBreaker
from resilient_store.executor import ResilientExecutor
from resilient_store.metrics import ResilienceMetrics
from resilient_store.retry import RetryConfig


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def metrics():
    return ResilienceMetrics()


@pytest.fixture
def cache(clock):
    return TTLCache(clock=clock)


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(name="test_store", failure_threshold=5, reset_timeout=30.0, clock=clock)


@pytest.fixture
def executor(cache, breaker, clock, sleep, metrics):
    return ResilientExecutor(
        cache=cache,
        breaker=breaker,
        retry_config=RetryConfig(max_retries=3, initial_delay=1.0, max_delay=10.0),
        default_ttl=120.0,
        clock=clock,
        sleep=sleep,
        metrics=metrics
    )
