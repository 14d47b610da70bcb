"""Circuit breaker for self-healing listener and subscriber lists.

A consumer that keeps raising (a broken view, a listener referencing a
destroyed widget) must not keep failing on every notification. Each event
listener and each view subscription owns a breaker; once the breaker opens
the owner stops delivering to that consumer and keeps it in a visible
"open circuits" list instead of dropping it silently.

States:
    CLOSED: Normal operation, the consumer receives notifications
    OPEN: Tripped, the consumer has been taken out of delivery

Failures accumulate: a success does not reset the count while CLOSED.
Only :meth:`CircuitBreaker.reset` re-arms a breaker.

Example:
    >>> from maxisync.core.circuit_breaker import CircuitBreaker
    >>>
    >>> breaker = CircuitBreaker(name="products:productsView", failure_threshold=5)
    >>> for _ in range(5):
    ...     breaker.record_failure(RuntimeError("boom"))
    >>> breaker.is_open
    True
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    state_changes: int = 0
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    last_state_change: datetime | None = None
    last_error: str | None = None

    @property
    def failure_rate(self) -> float:
        """Failure rate as percentage."""
        if self.total_calls == 0:
            return 0.0
        return (self.failed_calls / self.total_calls) * 100


@dataclass
class CircuitBreaker:
    """Per-consumer circuit breaker.

    Attributes:
        name: Identifier for this circuit (listener id or subscription key)
        failure_threshold: Number of accumulated failures before opening
    """

    name: str = "default"
    failure_threshold: int = 3

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False)

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    def _transition_to(self, new_state: CircuitState) -> None:
        self._state = new_state
        self._stats.state_changes += 1
        self._stats.last_state_change = utcnow()
        if new_state == CircuitState.CLOSED:
            self._failure_count = 0

    def allow_request(self) -> bool:
        """True while the consumer may still be invoked."""
        return self._state == CircuitState.CLOSED

    def record_success(self) -> None:
        """Record a successful invocation."""
        self._stats.total_calls += 1
        self._stats.successful_calls += 1
        self._stats.last_success_time = utcnow()

    def record_failure(self, error: Exception | None = None) -> bool:
        """Record a failed invocation.

        Returns:
            True if this failure opened the circuit.
        """
        self._failure_count += 1
        self._stats.total_calls += 1
        self._stats.failed_calls += 1
        self._stats.last_failure_time = utcnow()
        if error is not None:
            self._stats.last_error = str(error)

        if self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
            self._transition_to(CircuitState.OPEN)
            return True
        return False

    def reset(self) -> None:
        """Re-arm the circuit."""
        self._transition_to(CircuitState.CLOSED)

    def force_open(self) -> None:
        """Force circuit to open state (maintenance/testing)."""
        if self._state != CircuitState.OPEN:
            self._transition_to(CircuitState.OPEN)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "total_calls": self._stats.total_calls,
            "last_error": self._stats.last_error,
        }


__all__ = ["CircuitState", "CircuitStats", "CircuitBreaker", "utcnow"]
