"""
Error types for the resilient data-access layer.
"""

from enum import Enum
from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Stable error codes carried by every resilience error."""
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    TRANSIENT = "TRANSIENT"
    TIMEOUT = "TIMEOUT"
    CONNECTION = "CONNECTION"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"
    OPERATION_FAILED = "OPERATION_FAILED"


RETRYABLE_CODES = frozenset({ErrorCode.TRANSIENT, ErrorCode.TIMEOUT, ErrorCode.CONNECTION})


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class ResilienceError(Exception):
    """Base exception for the resilient store layer."""

    retryable = False

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code.value,
            message=self.message,
            details=self.details
        )


class TransientError(ResilienceError):
    """Transient failure of the remote store; safe to retry."""

    retryable = True

    def __init__(self, message: str = "Transient store failure", details: Optional[Dict[str, Any]] = None,
                 code: ErrorCode = ErrorCode.TRANSIENT):
        super().__init__(code, message, details)


class ConnectionFailedError(TransientError):
    """Connection refused, reset or dropped."""

    def __init__(self, message: str = "Connection to store failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code=ErrorCode.CONNECTION)


class OperationTimeoutError(TransientError):
    """The remote call did not complete in time."""

    def __init__(self, message: str = "Store operation timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code=ErrorCode.TIMEOUT)


class NonRetryableError(ResilienceError):
    """Permanent failure: validation, not-found, business-rule rejection."""

    def __init__(self, message: str = "Operation failed", details: Optional[Dict[str, Any]] = None,
                 code: ErrorCode = ErrorCode.OPERATION_FAILED):
        super().__init__(code, message, details)


class NotFoundError(NonRetryableError):
    """No rows matched the query."""

    def __init__(self, message: str = "No rows found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code=ErrorCode.NOT_FOUND)


class StoreValidationError(NonRetryableError):
    """The store rejected the request as invalid."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code=ErrorCode.VALIDATION)


class CircuitOpenError(ResilienceError):
    """Raised by a circuit breaker that is short-circuiting calls."""

    def __init__(self, retry_after_seconds: int, breaker_name: str = "default"):
        self.retry_after_seconds = retry_after_seconds
        self.breaker_name = breaker_name
        super().__init__(
            ErrorCode.CIRCUIT_OPEN,
            f"Service temporarily unavailable. Retrying automatically in {retry_after_seconds}s.",
            {"breaker": breaker_name, "retry_after_seconds": retry_after_seconds}
        )


class StoreError(ResilienceError):
    """An in-band error object returned by the store client, raised as an exception."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 code: ErrorCode = ErrorCode.OPERATION_FAILED, retryable: bool = False):
        super().__init__(code, message, details)
        self.retryable = retryable
