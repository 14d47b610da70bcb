"""
Priority-ordered publish/subscribe hub for in-process events.

Manifesto:
    Views, the cache and the sync coordinator must react to the same
    domain events without importing each other, and a bug in one view's
    listener must never stop the others from being notified or crash the
    code that emitted the event.

Architecture:
    ::

        EventBus
          ├── on(name, cb, priority=0, once=False) → unsubscribe()
          ├── off(name, cb_or_id)
          ├── emit(name, data)        ─ synchronous, snapshot, isolated
          ├── emit_async(name, data)  ─ gathers awaitables, isolated
          ├── history()/stats()/health_check()
          └── open_circuits()/reinstate(listener_id)

        Listener ── CircuitBreaker(failure_threshold=3)
                    OPEN → taken out of delivery, kept in open_circuits()

Delivery rules:
    - Listeners run in descending priority; ties keep registration order.
    - ``emit`` iterates a snapshot taken before the first listener runs, so
      listeners added or removed during emission only affect later rounds.
    - A listener exception is caught, logged, appended to the history as an
      ``error`` entry and recorded on the listener's breaker.
    - ``once`` listeners are removed right after their (single) invocation,
      whether it succeeded or failed.
    - After each emission an ``eventmanager:stats`` meta-event is scheduled
      outside the emitting call stack: ``loop.call_soon`` under a running
      asyncio loop, otherwise a post-emission hook drained when the
      outermost ``emit`` returns.

Tags:
    events, pubsub, event-bus, self-healing, maxisync

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from maxisync.core.circuit_breaker import CircuitBreaker
from maxisync.core.enums import HistoryType
from maxisync.core.errors import InvalidArgumentError
from maxisync.core.logging import get_logger
from maxisync.events.payloads import EmitStats, Events, payload_type_for

logger = get_logger(__name__)

Callback = Callable[[Any], Any]
Unsubscribe = Callable[[], int]

_HISTORY_MIN = 10
_HISTORY_MAX = 1000


def _listener_id() -> str:
    return f"listener_{uuid.uuid4().hex[:12]}"


@dataclass
class Listener:
    """A registered callback for one event name."""

    event_name: str
    callback: Callback
    priority: int = 0
    once: bool = False
    id: str = field(default_factory=_listener_id)
    breaker: CircuitBreaker = field(default_factory=CircuitBreaker)
    fired: bool = False

    @property
    def error_count(self) -> int:
        return self.breaker.failure_count


@dataclass
class HistoryEntry:
    """Diagnostic record of an emission or a listener failure."""

    event_name: str
    type: HistoryType
    timestamp: datetime
    data: Any = None


class EventBus:
    """In-process event bus with per-listener error isolation.

    Example::

        bus = EventBus()
        off = bus.on("data:product:created", render_row, priority=10)
        bus.emit("data:product:created", {"_id": "p1", "name": "LenteX"})
        off()
    """

    def __init__(
        self,
        *,
        history_size: int = 100,
        error_threshold: int = 3,
        debug: bool = False,
        strict_payloads: bool = False,
    ) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        self._open_circuits: dict[str, Listener] = {}
        self._max_history = max(_HISTORY_MIN, min(_HISTORY_MAX, history_size))
        self._history: deque[HistoryEntry] = deque(maxlen=self._max_history)
        self._error_threshold = error_threshold
        self._debug = debug
        self._strict = strict_payloads
        self._emit_depth = 0
        self._post_emit: deque[EmitStats] = deque()
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #

    def on(
        self,
        event_name: str,
        callback: Callback,
        *,
        priority: int = 0,
        once: bool = False,
    ) -> Unsubscribe:
        """Register a listener; returns a function that removes it."""
        if not isinstance(event_name, str) or not event_name.strip():
            raise InvalidArgumentError(
                "event_name must be a non-empty string", argument="event_name"
            )
        if not callable(callback):
            raise InvalidArgumentError("callback must be callable", argument="callback")
        if not isinstance(priority, int):
            raise InvalidArgumentError("priority must be an integer", argument="priority")

        listener = Listener(
            event_name=event_name,
            callback=callback,
            priority=priority,
            once=once,
            breaker=CircuitBreaker(failure_threshold=self._error_threshold),
        )
        listener.breaker.name = listener.id
        self._insert(listener)

        logger.debug(
            "listener_registered",
            event_name=event_name,
            listener_id=listener.id,
            priority=priority,
            once=once,
        )
        return lambda: self.off(event_name, listener.id)

    def once(self, event_name: str, callback: Callback, *, priority: int = 0) -> Unsubscribe:
        """Register a listener that fires at most once."""
        return self.on(event_name, callback, priority=priority, once=True)

    def off(self, event_name: str, callback_or_id: Callback | str) -> int:
        """Remove listeners by generated id (one) or by callback (all matches).

        Returns:
            Number of listeners removed.
        """
        listeners = self._listeners.get(event_name)
        if not listeners:
            logger.warning("off_unknown_event", event_name=event_name)
            return 0

        before = len(listeners)
        if isinstance(callback_or_id, str):
            for index, listener in enumerate(listeners):
                if listener.id == callback_or_id:
                    del listeners[index]
                    break
        else:
            listeners[:] = [l for l in listeners if l.callback != callback_or_id]

        removed = before - len(listeners)
        if not listeners:
            del self._listeners[event_name]
        if removed:
            logger.debug("listeners_removed", event_name=event_name, count=removed)
        return removed

    def _insert(self, listener: Listener) -> None:
        listeners = self._listeners.setdefault(listener.event_name, [])
        listeners.append(listener)
        # list.sort is stable: equal priorities keep registration order
        listeners.sort(key=lambda l: -l.priority)

    def _remove(self, listener: Listener) -> None:
        listeners = self._listeners.get(listener.event_name)
        if not listeners:
            return
        listeners[:] = [l for l in listeners if l is not listener]
        if not listeners:
            del self._listeners[listener.event_name]

    # ------------------------------------------------------------------ #
    # Emission
    # ------------------------------------------------------------------ #

    def emit(
        self,
        event_name: str,
        data: Any = None,
        *,
        timeout: float | None = None,
        emit_stats: bool = True,
    ) -> bool:
        """Invoke every current listener for ``event_name`` in priority order.

        Returns:
            True if no listener raised.
        """
        self._check_payload(event_name, data)
        started = time.perf_counter()
        self._record(event_name, data, HistoryType.EMITTED)

        listeners = self._listeners.get(event_name)
        if not listeners:
            logger.debug("emit_no_listeners", event_name=event_name)
            return True

        snapshot = list(listeners)
        success_count = 0
        error_count = 0

        self._emit_depth += 1
        try:
            for listener in snapshot:
                if listener.breaker.is_open or (listener.once and listener.fired):
                    continue
                listener.fired = True
                try:
                    result = listener.callback(data)
                    if inspect.isawaitable(result):
                        self._schedule_awaitable(listener, result, data, timeout)
                    listener.breaker.record_success()
                    success_count += 1
                except Exception as exc:
                    error_count += 1
                    self._listener_failed(listener, exc, data)
                finally:
                    if listener.once:
                        self._remove(listener)
        finally:
            self._emit_depth -= 1

        duration_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            "event_emitted",
            event_name=event_name,
            success_count=success_count,
            error_count=error_count,
            duration_ms=round(duration_ms, 3),
        )

        if emit_stats:
            self._schedule_stats(
                EmitStats(
                    event_name=event_name,
                    success_count=success_count,
                    error_count=error_count,
                    duration_ms=duration_ms,
                    listener_count=len(snapshot),
                )
            )
        if self._emit_depth == 0:
            self._drain_post_emit()

        return error_count == 0

    async def emit_async(self, event_name: str, data: Any = None) -> bool:
        """Invoke every listener, awaiting each independently.

        Listeners start in priority order; completion order is not guaranteed.

        Returns:
            True if every listener succeeded.
        """
        self._check_payload(event_name, data)
        self._record(event_name, data, HistoryType.EMITTED)

        listeners = self._listeners.get(event_name)
        if not listeners:
            return True

        snapshot = [
            l for l in listeners
            if not l.breaker.is_open and not (l.once and l.fired)
        ]
        for listener in snapshot:
            listener.fired = True

        async def invoke(listener: Listener) -> bool:
            try:
                result = listener.callback(data)
                if inspect.isawaitable(result):
                    await result
                listener.breaker.record_success()
                return True
            except Exception as exc:
                self._listener_failed(listener, exc, data)
                return False
            finally:
                if listener.once:
                    self._remove(listener)

        results = await asyncio.gather(*(invoke(l) for l in snapshot))
        error_count = results.count(False)
        logger.debug(
            "event_emitted_async",
            event_name=event_name,
            success_count=len(results) - error_count,
            error_count=error_count,
        )
        return error_count == 0

    def _schedule_awaitable(
        self, listener: Listener, awaitable: Any, data: Any, timeout: float | None
    ) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise RuntimeError(
                "listener returned an awaitable outside a running event loop; use emit_async"
            ) from None

        async def run() -> None:
            try:
                if timeout is not None:
                    await asyncio.wait_for(awaitable, timeout)
                else:
                    await awaitable
            except Exception as exc:
                self._listener_failed(listener, exc, data)

        task = loop.create_task(run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _listener_failed(self, listener: Listener, exc: Exception, data: Any) -> None:
        logger.error(
            "listener_error",
            event_name=listener.event_name,
            listener_id=listener.id,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        self._record(listener.event_name, {"error": str(exc), "data": data}, HistoryType.ERROR)
        if listener.breaker.record_failure(exc):
            logger.warning(
                "listener_circuit_open",
                event_name=listener.event_name,
                listener_id=listener.id,
                failures=listener.breaker.failure_count,
            )
            self._remove(listener)
            self._open_circuits[listener.id] = listener

    def _schedule_stats(self, stats: EmitStats) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._post_emit.append(stats)
            return
        loop.call_soon(self._deliver_stats, stats)

    def _drain_post_emit(self) -> None:
        while self._post_emit:
            self._deliver_stats(self._post_emit.popleft())

    def _deliver_stats(self, stats: EmitStats) -> None:
        if Events.STATS in self._listeners:
            self.emit(Events.STATS, stats, emit_stats=False)

    def _check_payload(self, event_name: str, data: Any) -> None:
        if not self._strict:
            return
        expected = payload_type_for(event_name)
        if expected is not None and not isinstance(data, expected):
            raise InvalidArgumentError(
                f"payload for {event_name!r} must be {expected}, got {type(data).__name__}",
                argument="data",
            )

    # ------------------------------------------------------------------ #
    # History
    # ------------------------------------------------------------------ #

    def _record(self, event_name: str, data: Any, entry_type: HistoryType) -> None:
        self._history.appendleft(
            HistoryEntry(
                event_name=event_name,
                type=entry_type,
                timestamp=datetime.now(timezone.utc),
                data=data if self._debug else None,
            )
        )

    def history(self, limit: int | None = None) -> list[HistoryEntry]:
        """History entries, newest first."""
        entries = list(self._history)
        return entries[:limit] if limit is not None else entries

    def clear_history(self) -> None:
        self._history.clear()

    def set_max_history_size(self, size: int) -> int:
        """Resize the history ring buffer (clamped to 10..1000)."""
        self._max_history = max(_HISTORY_MIN, min(_HISTORY_MAX, size))
        self._history = deque(list(self._history)[: self._max_history], maxlen=self._max_history)
        return self._max_history

    def set_debug(self, enabled: bool) -> None:
        """Toggle payload capture in history; disabling scrubs stored payloads."""
        self._debug = enabled
        if not enabled:
            for entry in self._history:
                entry.data = None
        logger.info("event_bus_debug", enabled=enabled)

    @property
    def debug(self) -> bool:
        return self._debug

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def listeners(self, event_name: str) -> list[Listener]:
        return list(self._listeners.get(event_name, []))

    def listener_count(self, event_name: str | None = None) -> int:
        if event_name is not None:
            return len(self._listeners.get(event_name, []))
        return sum(len(ls) for ls in self._listeners.values())

    def has_listeners(self, event_name: str) -> bool:
        return bool(self._listeners.get(event_name))

    def open_circuits(self) -> list[dict[str, Any]]:
        """Listeners taken out of delivery by their circuit breaker."""
        return [
            {"event_name": l.event_name, **l.breaker.to_dict()}
            for l in self._open_circuits.values()
        ]

    def reinstate(self, listener_id: str) -> bool:
        """Reset a tripped listener's breaker and put it back into delivery."""
        listener = self._open_circuits.pop(listener_id, None)
        if listener is None:
            return False
        listener.breaker.reset()
        self._insert(listener)
        logger.info("listener_reinstated", event_name=listener.event_name, listener_id=listener_id)
        return True

    def memory_estimate_bytes(self) -> int:
        size = 0
        for event_name, listeners in self._listeners.items():
            size += len(event_name) * 2
            size += len(listeners) * 100
        size += len(self._history) * 200
        return size

    def stats(self) -> dict[str, Any]:
        return {
            "total_events": len(self._listeners),
            "total_listeners": self.listener_count(),
            "events": {
                name: {
                    "listener_count": len(listeners),
                    "priorities": [l.priority for l in listeners],
                    "has_once_listeners": any(l.once for l in listeners),
                }
                for name, listeners in self._listeners.items()
            },
            "open_circuits": len(self._open_circuits),
            "recent_events": [e.event_name for e in self.history(10)],
            "memory_bytes": self.memory_estimate_bytes(),
        }

    def health_check(self) -> dict[str, Any]:
        stats = self.stats()
        issues = []
        if stats["total_listeners"] > 100:
            issues.append(f"Too many active listeners: {stats['total_listeners']}")
        for name, info in stats["events"].items():
            if info["listener_count"] > 10:
                issues.append(f"Event {name!r} has {info['listener_count']} listeners")
        if stats["memory_bytes"] > 1024 * 1024:
            issues.append(f"High memory estimate: {stats['memory_bytes'] // 1024} KB")
        if self._open_circuits:
            issues.append(f"{len(self._open_circuits)} listener circuit(s) open")
        return {"healthy": not issues, "issues": issues, "stats": stats}

    # ------------------------------------------------------------------ #
    # Cleanup
    # ------------------------------------------------------------------ #

    def clear_event(self, event_name: str) -> None:
        self._listeners.pop(event_name, None)

    def clear(self) -> None:
        """Remove every listener and the history."""
        self._listeners.clear()
        self._open_circuits.clear()
        self._history.clear()
        self._post_emit.clear()


__all__ = ["EventBus", "Listener", "HistoryEntry"]
