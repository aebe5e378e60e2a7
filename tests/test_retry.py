"""
Unit tests for retry with backoff and error classification.
"""

import asyncio

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from resilient_store.errors import (
    CircuitOpenError,
    ConnectionFailedError,
    NotFoundError,
    OperationTimeoutError,
    StoreError,
    StoreValidationError,
)
from resilient_store.results import QueryResult
from resilient_store.retry import (
    RetryConfig,
    add_jitter,
    is_retryable_error,
    is_transient_store_error,
    retry_on_exception,
    retry_store_query,
    retry_with_backoff,
)


class TestErrorClassification:
    """Test cases for the default retry predicate."""

    @pytest.mark.parametrize("error", [
        ConnectionFailedError(),
        OperationTimeoutError(),
        ConnectionResetError("reset by peer"),
        ConnectionRefusedError(),
        BrokenPipeError(),
        TimeoutError(),
        asyncio.TimeoutError(),
        httpx.ConnectError("connection refused"),
        httpx.ReadTimeout("read timed out"),
        Exception("TypeError: fetch failed"),
        RuntimeError("connect ECONNRESET 10.0.0.1:443"),
        RuntimeError("socket hang up"),
    ])
    def test_transient_errors_are_retryable(self, error):
        assert is_retryable_error(error)

    @pytest.mark.parametrize("error", [
        NotFoundError(),
        StoreValidationError("check_out must be after check_in"),
        ValueError("bad input"),
        KeyError("id"),
        CircuitOpenError(10),
    ])
    def test_permanent_errors_are_not_retryable(self, error):
        assert not is_retryable_error(error)

    def test_in_band_error_classified_by_code(self):
        assert is_transient_store_error({"code": "TIMEOUT", "message": "slow"})
        assert not is_transient_store_error({"code": "NOT_FOUND", "message": "timeout in text is ignored"})

    def test_in_band_error_classified_by_text(self):
        assert is_transient_store_error({"message": "TypeError: fetch failed", "details": ""})
        assert is_transient_store_error({"message": "", "details": "UND_ERR_CONNECT_TIMEOUT"})
        assert not is_transient_store_error({"message": "JSON object requested, multiple (or no) rows returned"})


class TestJitter:

    def test_jitter_bounds(self):
        with patch("resilient_store.retry.random.random", return_value=0.0):
            assert add_jitter(2.0) == 1.0
        with patch("resilient_store.retry.random.random", return_value=0.999):
            assert add_jitter(2.0) == pytest.approx(2.998)


class TestRetryWithBackoff:
    """Test cases for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, sleep):
        operation = AsyncMock(return_value="ok")

        result = await retry_with_backoff(operation, RetryConfig(), sleep=sleep)

        assert result == "ok"
        assert operation.call_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_always_failing_retryable_makes_max_retries_plus_one_calls(self, sleep):
        operation = AsyncMock(side_effect=ConnectionFailedError("ECONNREFUSED"))

        with pytest.raises(ConnectionFailedError):
            await retry_with_backoff(operation, RetryConfig(max_retries=3), sleep=sleep)

        assert operation.call_count == 4
        assert len(sleep.delays) == 3

    @pytest.mark.asyncio
    async def test_non_retryable_called_once(self, sleep):
        operation = AsyncMock(side_effect=StoreValidationError())

        with pytest.raises(StoreValidationError):
            await retry_with_backoff(operation, RetryConfig(max_retries=10), sleep=sleep)

        assert operation.call_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, sleep, metrics):
        operation = AsyncMock(side_effect=[TimeoutError(), TimeoutError(), "ok"])

        result = await retry_with_backoff(operation, RetryConfig(), "fetch-blocked-dates", sleep=sleep, metrics=metrics)

        assert result == "ok"
        assert operation.call_count == 3
        counter = metrics.get_metric("retry_attempts_total")
        assert counter.labels(operation="fetch-blocked-dates")._value.get() == 2

    @pytest.mark.asyncio
    async def test_exponential_backoff_capped_at_max_delay(self, sleep):
        operation = AsyncMock(side_effect=ConnectionError("network down"))
        config = RetryConfig(max_retries=5, initial_delay=1.0, max_delay=4.0, backoff_multiplier=2.0)

        with patch("resilient_store.retry.random.random", return_value=0.5):
            with pytest.raises(ConnectionError):
                await retry_with_backoff(operation, config, sleep=sleep)

        # random() == 0.5 makes the jitter factor exactly 1
        assert sleep.delays == [1.0, 2.0, 4.0, 4.0, 4.0]

    @pytest.mark.asyncio
    async def test_jittered_delay_never_exceeds_max_delay(self, sleep):
        operation = AsyncMock(side_effect=ConnectionError())
        config = RetryConfig(max_retries=4, initial_delay=8.0, max_delay=10.0)

        with patch("resilient_store.retry.random.random", return_value=0.99):
            with pytest.raises(ConnectionError):
                await retry_with_backoff(operation, config, sleep=sleep)

        assert all(delay <= 10.0 for delay in sleep.delays)

    @pytest.mark.asyncio
    async def test_zero_retries(self, sleep):
        operation = AsyncMock(side_effect=ConnectionError())

        with pytest.raises(ConnectionError):
            await retry_with_backoff(operation, RetryConfig(max_retries=0), sleep=sleep)

        assert operation.call_count == 1

    @pytest.mark.asyncio
    async def test_custom_retryable_predicate(self, sleep):
        operation = AsyncMock(side_effect=ValueError("flaky"))
        config = RetryConfig(max_retries=2, retryable=lambda e: isinstance(e, ValueError))

        with pytest.raises(ValueError):
            await retry_with_backoff(operation, config, sleep=sleep)

        assert operation.call_count == 3

    @pytest.mark.asyncio
    async def test_cancellation_during_backoff_stops_retrying(self):
        started = asyncio.Event()
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            started.set()
            raise ConnectionError("down")

        config = RetryConfig(max_retries=3, initial_delay=30.0, max_delay=30.0)
        task = asyncio.ensure_future(retry_with_backoff(operation, config))
        await started.wait()
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert calls == 1

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            RetryConfig(max_retries=-1)
        with pytest.raises(ValueError):
            RetryConfig(backoff_multiplier=0.5)


class TestRetryStoreQuery:
    """Test cases for the in-band error variant."""

    @pytest.mark.asyncio
    async def test_transient_in_band_error_is_retried(self, sleep):
        query = AsyncMock(side_effect=[
            {"data": None, "error": {"message": "TypeError: fetch failed", "details": ""}},
            {"data": [1, 2], "error": None},
        ])

        result = await retry_store_query(query, "fetch-bookings", RetryConfig(), sleep=sleep)

        assert result == QueryResult(value=[1, 2])
        assert query.call_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_in_band_error_raises_store_error(self, sleep):
        query = AsyncMock(return_value={"data": None, "error": {"message": "timeout", "details": "connect timeout"}})

        with pytest.raises(StoreError) as exc_info:
            await retry_store_query(query, "fetch-bookings", RetryConfig(max_retries=2), sleep=sleep)

        assert exc_info.value.retryable
        assert exc_info.value.message == "connect timeout"
        assert query.call_count == 3

    @pytest.mark.asyncio
    async def test_permanent_in_band_error_returned_untouched(self, sleep):
        error = {"code": "NOT_FOUND", "message": "No rows found"}
        query = AsyncMock(return_value={"data": None, "error": error})

        result = await retry_store_query(query, "fetch-booking", RetryConfig(), sleep=sleep)

        assert result.error == error
        assert query.call_count == 1


class TestRetryDecorator:

    @pytest.mark.asyncio
    async def test_decorated_function_is_retried(self):
        calls = []

        @retry_on_exception(RetryConfig(max_retries=2, initial_delay=0.0, max_delay=0.0))
        async def flaky(value):
            calls.append(value)
            if len(calls) < 2:
                raise ConnectionResetError()
            return value * 2

        assert await flaky(21) == 42
        assert calls == [21, 21]
        assert flaky.__name__ == "flaky"
