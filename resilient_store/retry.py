"""
Retry with exponential backoff and jitter for remote store calls.
"""

import asyncio
import functools
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional

import httpx

from resilient_store.errors import ErrorCode, RETRYABLE_CODES, ResilienceError, StoreError
from resilient_store.logging import get_logger
from resilient_store.metrics import ResilienceMetrics
from resilient_store.results import QueryResult

# Failure signatures of store clients that raise untyped errors
TRANSIENT_SIGNATURES = (
    "fetch failed",
    "connect timeout",
    "econnrefused",
    "econnreset",
    "epipe",
    "etimedout",
    "und_err_connect_timeout",
    "network",
    "socket hang up",
    "timeout",
    "timed out",
    "connection reset",
    "connection refused",
    "broken pipe",
)


def _matches_transient_signature(text: str) -> bool:
    text = text.lower()
    return any(signature in text for signature in TRANSIENT_SIGNATURES)


def is_retryable_error(error: BaseException) -> bool:
    """Default retry predicate: connection and timeout class failures only."""
    if isinstance(error, ResilienceError):
        return error.retryable
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, Exception):
        return _matches_transient_signature(str(error))
    return False


def is_transient_store_error(error: Any) -> bool:
    """Classify an in-band error object (mapping or attribute bag) from the store client."""
    if isinstance(error, BaseException):
        return is_retryable_error(error)

    def _get(name: str) -> Any:
        if isinstance(error, Mapping):
            return error.get(name)
        return getattr(error, name, None)

    code = _get("code")
    if isinstance(code, str) and code in ErrorCode.__members__:
        return ErrorCode(code) in RETRYABLE_CODES
    text = f"{_get('message') or ''} {_get('details') or ''}"
    if not text.strip():
        text = str(error)
    return _matches_transient_signature(text)


def add_jitter(delay: float) -> float:
    """Uniform jitter in [0.5 * delay, 1.5 * delay)."""
    return delay * (0.5 + random.random())


@dataclass
class RetryConfig:
    """Configuration for retry behavior. Delays are in seconds."""
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable: Callable[[BaseException], bool] = field(default=is_retryable_error)

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def with_max_retries(self, max_retries: Optional[int]) -> "RetryConfig":
        if max_retries is None or max_retries == self.max_retries:
            return self
        return RetryConfig(
            max_retries=max_retries,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            backoff_multiplier=self.backoff_multiplier,
            retryable=self.retryable
        )


async def retry_with_backoff(
    operation: Callable[[], Awaitable[Any]],
    config: Optional[RetryConfig] = None,
    operation_name: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    metrics: Optional[ResilienceMetrics] = None,
) -> Any:
    """Run ``operation`` until it succeeds, fails permanently, or retries run out.

    Non-retryable errors propagate after the first attempt. Retryable ones are
    retried up to ``config.max_retries`` times, and the last error propagates.
    """
    config = config or RetryConfig()
    logger = get_logger("resilient_store.retry")
    delay = config.initial_delay

    for attempt in range(config.max_retries + 1):
        try:
            logger.debug("Retry attempt", attempt=attempt + 1, operation=operation_name)
            result = await operation()
        except Exception as e:
            if not config.retryable(e):
                raise

            if attempt == config.max_retries:
                logger.error(
                    "All retry attempts exhausted",
                    attempts=attempt + 1,
                    operation=operation_name,
                    error=str(e)
                )
                if metrics is not None:
                    metrics.record_retry_exhausted(operation_name)
                raise

            actual_delay = min(add_jitter(delay), config.max_delay)
            logger.warning(
                "Retry attempt failed, waiting before next attempt",
                attempt=attempt + 1,
                delay=round(actual_delay, 3),
                operation=operation_name,
                error=str(e)
            )
            if metrics is not None:
                metrics.record_retry(operation_name)

            await sleep(actual_delay)
            delay = min(delay * config.backoff_multiplier, config.max_delay)
            continue

        if attempt > 0:
            logger.info("Retry succeeded", attempt=attempt + 1, operation=operation_name)
        return result


async def retry_store_query(
    query: Callable[[], Awaitable[Any]],
    operation_name: str,
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    metrics: Optional[ResilienceMetrics] = None,
) -> QueryResult:
    """Retry a store query that reports failures in-band.

    A returned error that looks transient is raised as a retryable StoreError
    so it goes through the same backoff as a thrown one. Other in-band errors
    come back untouched in the QueryResult.
    """

    async def _attempt() -> QueryResult:
        result = QueryResult.coerce(await query())
        if result.error is not None and is_transient_store_error(result.error):
            error = result.error
            if isinstance(error, Mapping):
                message = error.get("details") or error.get("message") or str(error)
                details = dict(error)
            else:
                message = getattr(error, "details", None) or getattr(error, "message", None) or str(error)
                details = {}
            raise StoreError(str(message), details=details, code=ErrorCode.TRANSIENT, retryable=True)
        return result

    return await retry_with_backoff(_attempt, config, operation_name, sleep=sleep, metrics=metrics)


def retry_on_exception(config: Optional[RetryConfig] = None) -> Callable:
    """Decorator for retrying async functions on retryable exceptions."""

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            return await retry_with_backoff(
                lambda: func(*args, **kwargs),
                config,
                operation_name=func.__name__
            )

        return wrapper

    return decorator
