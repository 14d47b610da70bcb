"""
Structured error types for the maxisync core.

Five kinds of failure exist in the synchronization layer and each is handled
at a different boundary:

1. **Invocation errors** - bad arguments to ``on``/``subscribe``/``emit``.
   Raised synchronously as :class:`InvalidArgumentError`; they are the
   caller's bug.
2. **Listener/callback errors** - a registered consumer raises during
   notification. Always absorbed where the consumer was invoked, counted
   against the consumer's circuit breaker, never propagated.
3. **Network/API errors** - the backend returns a failure. Never raised by
   the network layer: they travel as data inside ``ApiResponse`` and
   :class:`ApiError` only describes them.
4. **Cache consistency errors** - an unsupported action keyword. Parsing
   raises :class:`CacheError`; the cache store logs it and ignores the
   mutation.
5. **Queue replay errors** - a deferred write fails on replay. Handled by
   the queue policy (drop, retry, dead-letter).

Architecture:
    ::

        MaxiSyncError (category, retryable, context, cause)
        ├── InvalidArgumentError   (INVOCATION)
        ├── ValidationError        (VALIDATION)
        ├── ApiError               (NETWORK)
        │   └── ConnectionUnavailableError (retryable)
        ├── CacheError             (CACHE)
        └── QueueReplayError       (QUEUE)

Examples:
    >>> err = ApiError("Backend no disponible", status=None)
    >>> err.category
    <ErrorCategory.NETWORK: 'NETWORK'>
    >>> err.with_context(endpoint="products").context.endpoint
    'products'

Tags:
    error-handling, exception-hierarchy, maxisync

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and logging."""

    INVOCATION = "INVOCATION"
    VALIDATION = "VALIDATION"
    NETWORK = "NETWORK"
    CACHE = "CACHE"
    QUEUE = "QUEUE"
    LISTENER = "LISTENER"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        entity_kind: Entity kind involved (``products``, ``sales``...)
        event_name: Event being emitted when the error happened
        view_name: View that owned the failing callback
        operation_id: Offline operation identifier
        endpoint: Backend endpoint that was being called
        http_status: HTTP status code if applicable
        metadata: Additional key-value pairs
    """

    entity_kind: str | None = None
    event_name: str | None = None
    view_name: str | None = None
    operation_id: str | None = None
    endpoint: str | None = None
    http_status: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["entity_kind", "event_name", "view_name", "operation_id",
                    "endpoint", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class MaxiSyncError(Exception):
    """
    Base exception for all maxisync errors.

    Every instance carries a category, a retryable flag, an
    :class:`ErrorContext` and an optional chained cause. Subclasses set
    ``default_category`` and ``default_retryable``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> MaxiSyncError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


class InvalidArgumentError(MaxiSyncError):
    """Bad arguments passed to a registration or emission call.

    Raised synchronously; never retryable.
    """

    default_category = ErrorCategory.INVOCATION

    def __init__(self, message: str, *, argument: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.argument = argument

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.argument:
            result["argument"] = self.argument
        return result


class ValidationError(MaxiSyncError):
    """Domain data failed validation (e.g. insufficient stock)."""

    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class ApiError(MaxiSyncError):
    """Describes a failed backend call.

    The network layer never raises this; it is attached to a failed
    ``ApiResponse`` so callers can inspect or re-raise it themselves.
    """

    default_category = ErrorCategory.NETWORK

    def __init__(self, message: str, *, status: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status = status
        if status is not None:
            self.context.http_status = status


class ConnectionUnavailableError(ApiError):
    """The backend could not be reached at all."""

    default_retryable = True


class CacheError(MaxiSyncError):
    """Cache consistency problem, such as an unsupported action keyword."""

    default_category = ErrorCategory.CACHE


class QueueReplayError(MaxiSyncError):
    """An offline operation failed during replay."""

    default_category = ErrorCategory.QUEUE
    default_retryable = True


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, MaxiSyncError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError, OSError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, MaxiSyncError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.NETWORK
    if isinstance(error, (TypeError, ValueError)):
        return ErrorCategory.INVOCATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "MaxiSyncError",
    "InvalidArgumentError",
    "ValidationError",
    "ApiError",
    "ConnectionUnavailableError",
    "CacheError",
    "QueueReplayError",
    "is_retryable",
    "categorize_error",
]
