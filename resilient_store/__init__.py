"""
Resilient data-access layer for the booking site's remote store.

Building blocks:

- cache: In-memory TTL cache with stale-read fallback
- retry: Retry with exponential backoff, jitter and error classification
- circuit_breaker: CLOSED / OPEN / HALF_OPEN guard per upstream dependency
- executor: resilient_query, composing the three
- errors: Typed error hierarchy and error responses
- config: Settings via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
"""

from resilient_store.cache import CacheTTL, TTLCache, fetch_with_cache
from resilient_store.circuit_breaker import CircuitBreaker, CircuitBreakerManager, CircuitBreakerState
from resilient_store.config import ResilienceConfig, get_config
from resilient_store.errors import (
    CircuitOpenError,
    ConnectionFailedError,
    ErrorCode,
    NonRetryableError,
    NotFoundError,
    OperationTimeoutError,
    ResilienceError,
    StoreError,
    StoreValidationError,
    TransientError,
)
from resilient_store.executor import ResilientExecutor, create_executor
from resilient_store.results import ErrorInfo, QueryResult, ResilientResult
from resilient_store.retry import RetryConfig, is_retryable_error, retry_store_query, retry_with_backoff

__all__ = [
    "CacheTTL",
    "TTLCache",
    "fetch_with_cache",
    "CircuitBreaker",
    "CircuitBreakerManager",
    "CircuitBreakerState",
    "ResilienceConfig",
    "get_config",
    "CircuitOpenError",
    "ConnectionFailedError",
    "ErrorCode",
    "NonRetryableError",
    "NotFoundError",
    "OperationTimeoutError",
    "ResilienceError",
    "StoreError",
    "StoreValidationError",
    "TransientError",
    "ResilientExecutor",
    "create_executor",
    "ErrorInfo",
    "QueryResult",
    "ResilientResult",
    "RetryConfig",
    "is_retryable_error",
    "retry_store_query",
    "retry_with_backoff",
]
