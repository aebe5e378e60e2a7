"""
Result types exchanged with the remote store client and with callers.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from resilient_store.errors import CircuitOpenError, ErrorCode, ResilienceError


@dataclass(frozen=True)
class QueryResult:
    """A maybe-error pair as returned by the remote store client.

    Exactly one side is meaningful: either ``error`` is set, or ``value`` holds
    the (possibly ``None``) payload.
    """

    value: Any = None
    error: Any = None

    def __post_init__(self):
        if self.value is not None and self.error is not None:
            raise ValueError("QueryResult cannot carry both a value and an error")

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def coerce(cls, result: Any) -> "QueryResult":
        """Normalize whatever the store client returned into a QueryResult."""
        if isinstance(result, QueryResult):
            return result
        if isinstance(result, Mapping) and any(k in result for k in ("error", "data", "value")):
            value = result.get("value", result.get("data"))
            error = result.get("error")
            # An error wins over a partial payload
            return cls(value=None if error is not None else value, error=error)
        return cls(value=result)


@dataclass(frozen=True)
class ErrorInfo:
    """Caller-facing description of a failed resilient query."""

    code: str
    message: str
    retry_after_seconds: Optional[int] = None

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorInfo":
        if isinstance(error, CircuitOpenError):
            return cls(
                code=error.code.value,
                message=error.message,
                retry_after_seconds=error.retry_after_seconds
            )
        if isinstance(error, ResilienceError):
            return cls(code=error.code.value, message=error.message)
        return cls(code=ErrorCode.OPERATION_FAILED.value, message=str(error) or type(error).__name__)

    @classmethod
    def from_store_error(cls, error: Any) -> "ErrorInfo":
        """Describe an in-band error object returned by the store."""
        message = _field(error, "message") or str(error)
        code = _field(error, "code")
        if isinstance(code, ErrorCode):
            code = code.value
        elif not isinstance(code, str) or code not in ErrorCode.__members__:
            code = ErrorCode.OPERATION_FAILED.value
        return cls(code=code, message=message)


@dataclass(frozen=True)
class ResilientResult:
    """Outcome of ResilientExecutor.resilient_query."""

    value: Any = None
    error: Optional[ErrorInfo] = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)
