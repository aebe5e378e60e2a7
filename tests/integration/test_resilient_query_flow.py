"""
End-to-end flow through the public API: cache, breaker, retry and stale fallback together.
"""

import pytest

from resilient_store import (
    ConnectionFailedError,
    ResilienceConfig,
    create_executor,
)


class FlakyStore:
    """Remote store stand-in that can be switched between healthy and down."""

    def __init__(self):
        self.calls = 0
        self.down = False
        self.rows = {"pricing-config": {"base_rate": 42}}

    async def select(self, key):
        self.calls += 1
        if self.down:
            raise ConnectionFailedError("connect ECONNREFUSED 127.0.0.1:5432")
        return {"data": self.rows.get(key), "error": None}


@pytest.mark.integration
class TestResilientQueryFlow:
    """The booking layer's view of a store outage."""

    @pytest.fixture
    def store(self):
        return FlakyStore()

    @pytest.fixture
    def executor(self, clock, sleep):
        config = ResilienceConfig(
            cache_default_ttl=2.0,
            retry_max_retries=3,
            breaker_failure_threshold=5,
            breaker_reset_timeout=30.0
        )
        return create_executor(config, clock=clock, sleep=sleep)

    @pytest.mark.asyncio
    async def test_cache_then_stale_fallback(self, executor, store, clock):
        async def query():
            return await store.select("pricing-config")

        first = await executor.resilient_query("pricing-config", query, cache_ttl=2.0)
        assert (first.value, first.from_cache, first.error) == ({"base_rate": 42}, False, None)

        clock.advance(1.0)
        second = await executor.resilient_query("pricing-config", query, cache_ttl=2.0)
        assert (second.value, second.from_cache, second.error) == ({"base_rate": 42}, True, None)
        assert store.calls == 1

        clock.advance(1.5)
        store.down = True
        third = await executor.resilient_query("pricing-config", query, cache_ttl=2.0)
        assert (third.value, third.from_cache, third.error) == ({"base_rate": 42}, True, None)
        # initial attempt plus three retries
        assert store.calls == 5

    @pytest.mark.asyncio
    async def test_outage_opens_breaker_and_recovery_closes_it(self, executor, store, clock, sleep):
        async def query():
            return await store.select("availability")

        store.down = True
        for _ in range(5):
            result = await executor.resilient_query("availability", query, max_retries=0)
            assert result.error.code == "CONNECTION"
        assert executor.breaker.is_open()

        calls_when_opened = store.calls
        clock.advance(10.0)
        blocked = await executor.resilient_query("availability", query)
        assert blocked.error.code == "CIRCUIT_OPEN"
        assert blocked.error.retry_after_seconds == 20
        assert store.calls == calls_when_opened

        store.down = False
        store.rows["availability"] = {"2026-12-24": "booked"}
        clock.advance(20.0)
        trial = await executor.resilient_query("availability", query, cache_ttl=0)
        assert trial.value == {"2026-12-24": "booked"}
        assert executor.breaker.is_half_open()

        await executor.resilient_query("availability", query, cache_ttl=0)
        assert executor.breaker.is_closed()
        assert executor.health()["breaker"]["failure_count"] == 0
