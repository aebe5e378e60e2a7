"""
Prometheus metrics for cache, retry and circuit breaker activity.
"""

from typing import Any, Dict, Optional

from prometheus_client import Counter, Gauge, CollectorRegistry

# Gauge encoding of CircuitBreakerState
STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


class ResilienceMetrics:
    """Metrics collector for the resilient data-access layer.

    Metrics are left unregistered unless a registry is passed, so any number of
    collectors can coexist in one process (one per test, one per executor).
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        self._metrics["cache_requests_total"] = Counter(
            "resilient_cache_requests_total",
            "Cache lookups by result",
            ["result"],
            registry=self.registry
        )

        self._metrics["retry_attempts_total"] = Counter(
            "resilient_retry_attempts_total",
            "Retries performed after a transient failure",
            ["operation"],
            registry=self.registry
        )

        self._metrics["retry_exhausted_total"] = Counter(
            "resilient_retry_exhausted_total",
            "Operations that failed after every retry",
            ["operation"],
            registry=self.registry
        )

        self._metrics["circuit_state"] = Gauge(
            "resilient_circuit_state",
            "Circuit breaker state (0 closed, 1 half-open, 2 open)",
            ["breaker"],
            registry=self.registry
        )

        self._metrics["circuit_transitions_total"] = Counter(
            "resilient_circuit_transitions_total",
            "Circuit breaker state transitions",
            ["breaker", "to_state"],
            registry=self.registry
        )

        self._metrics["query_total"] = Counter(
            "resilient_query_total",
            "Resilient queries by outcome",
            ["outcome"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_cache_lookup(self, result: str):
        self._metrics["cache_requests_total"].labels(result=result).inc()

    def record_retry(self, operation: str):
        self._metrics["retry_attempts_total"].labels(operation=operation).inc()

    def record_retry_exhausted(self, operation: str):
        self._metrics["retry_exhausted_total"].labels(operation=operation).inc()

    def record_circuit_transition(self, breaker: str, to_state: str):
        """Record a transition and update the state gauge."""
        self._metrics["circuit_transitions_total"].labels(breaker=breaker, to_state=to_state).inc()
        self._metrics["circuit_state"].labels(breaker=breaker).set(STATE_VALUES[to_state])

    def record_query(self, outcome: str):
        self._metrics["query_total"].labels(outcome=outcome).inc()
