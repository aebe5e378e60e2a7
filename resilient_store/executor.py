"""
Resilient executor: cache-first lookup, circuit-breaker-gated retrying call,
write-through on success and stale-cache fallback on failure.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from prometheus_client import CollectorRegistry

from resilient_store.cache import CacheTTL, TTLCache
from resilient_store.circuit_breaker import CircuitBreaker
from resilient_store.config import ResilienceConfig
from resilient_store.errors import CircuitOpenError
from resilient_store.logging import get_logger
from resilient_store.metrics import ResilienceMetrics
from resilient_store.results import ErrorInfo, QueryResult, ResilientResult
from resilient_store.retry import RetryConfig, retry_store_query


class ResilientExecutor:
    """Single entry point for every read and write against the remote store.

    Collaborators are injected so each test (or each upstream dependency) can
    own an isolated cache and breaker.
    """

    def __init__(self,
                 cache: Optional[TTLCache] = None,
                 breaker: Optional[CircuitBreaker] = None,
                 retry_config: Optional[RetryConfig] = None,
                 default_ttl: float = CacheTTL.MEDIUM,
                 prune_interval: float = 60.0,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 metrics: Optional[ResilienceMetrics] = None):
        self._clock = clock
        self._sleep = sleep
        self.metrics = metrics
        self.cache = cache if cache is not None else TTLCache(clock=clock, metrics=metrics)
        self.breaker = breaker if breaker is not None else CircuitBreaker(name="store", clock=clock, metrics=metrics)
        self.retry_config = retry_config or RetryConfig()
        self.default_ttl = default_ttl
        self.prune_interval = prune_interval
        self.logger = get_logger("resilient_store.executor")
        self._last_prune_at = clock()

    async def resilient_query(self,
                              key: str,
                              operation: Callable[[], Awaitable[Any]],
                              *,
                              operation_name: Optional[str] = None,
                              cache_ttl: Optional[float] = None,
                              max_retries: Optional[int] = None,
                              use_circuit_breaker: bool = True) -> ResilientResult:
        """Execute ``operation`` with cache, circuit breaker and retry.

        ``operation`` is a zero-argument coroutine function returning a
        QueryResult, a ``{"data"/"value", "error"}`` mapping or a bare value,
        or raising on hard failure. ``cache_ttl=0`` disables caching (use it
        for writes, usually together with ``use_circuit_breaker=False``).

        Never raises for store failures: errors come back in
        ``ResilientResult.error``. Cancellation propagates.
        """
        ttl = self.default_ttl if cache_ttl is None else cache_ttl
        name = operation_name or key
        self._maybe_prune()

        if ttl > 0:
            cached = self.cache.get(key)
            if cached is not None:
                self._record("cache")
                return ResilientResult(value=cached, error=None, from_cache=True)

        retry_config = self.retry_config.with_max_retries(max_retries)

        async def _call() -> QueryResult:
            return await retry_store_query(operation, name, retry_config, sleep=self._sleep, metrics=self.metrics)

        try:
            if use_circuit_breaker:
                result = await self.breaker.execute(_call)
            else:
                result = await _call()
        except Exception as e:
            return self._on_failure(key, name, ttl, e, retry_config)

        if result.error is not None:
            self.logger.info("Store rejected operation", operation=name, key=key, error=str(result.error))
            self._record("error")
            return ResilientResult(value=None, error=ErrorInfo.from_store_error(result.error), from_cache=False)

        if ttl > 0 and result.value is not None:
            self.cache.set(key, result.value, ttl)
        self._record("fresh")
        return ResilientResult(value=result.value, error=None, from_cache=False)

    def _on_failure(self, key: str, name: str, ttl: float, error: Exception,
                    retry_config: RetryConfig) -> ResilientResult:
        transient = isinstance(error, CircuitOpenError) or retry_config.retryable(error)
        if ttl > 0 and transient:
            stale = self.cache.get(key, allow_stale=True)
            if stale is not None:
                self.logger.warning("Serving stale cache", key=key, operation=name, error=str(error))
                self._record("stale")
                return ResilientResult(value=stale, error=None, from_cache=True)

        self.logger.error(
            "Resilient query failed",
            key=key,
            operation=name,
            error=str(error),
            error_type=type(error).__name__
        )
        self._record("error")
        return ResilientResult(value=None, error=ErrorInfo.from_exception(error), from_cache=False)

    def _maybe_prune(self):
        now = self._clock()
        if now - self._last_prune_at >= self.prune_interval:
            self._last_prune_at = now
            removed = self.cache.prune()
            if removed:
                self.logger.debug("Pruned expired cache entries", removed=removed)

    def invalidate(self, key: str):
        """Drop a cached key, e.g. after a write that changes it."""
        self.cache.delete(key)

    def health(self) -> Dict[str, Any]:
        return {
            "breaker": self.breaker.get_state(),
            "cache_entries": len(self.cache),
        }

    def _record(self, outcome: str):
        if self.metrics is not None:
            self.metrics.record_query(outcome)


def create_executor(config: Optional[ResilienceConfig] = None,
                    clock: Callable[[], float] = time.time,
                    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                    registry: Optional[CollectorRegistry] = None) -> ResilientExecutor:
    """Build an executor, its cache and its breaker from configuration."""
    config = config or ResilienceConfig()
    metrics = ResilienceMetrics(registry) if config.enable_metrics else None
    return ResilientExecutor(
        cache=TTLCache(clock=clock, metrics=metrics),
        breaker=CircuitBreaker(name=config.service_name, clock=clock, metrics=metrics, **config.breaker_kwargs()),
        retry_config=config.retry_config(),
        default_ttl=config.cache_default_ttl,
        prune_interval=config.cache_prune_interval,
        clock=clock,
        sleep=sleep,
        metrics=metrics
    )
