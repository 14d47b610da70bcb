"""
View subscription registry.

Views register callbacks per ``(entity kind, view name)``; the cache store
fans every mutation of a kind out to all callbacks of that kind, across
view names. Each callback is isolated: a failure is counted on the
subscription's own circuit breaker, and once the breaker opens the
subscription is taken out of the registry and listed in
:meth:`SubscriptionRegistry.open_circuits`.

Architecture:
    ::

        SubscriptionRegistry
          _subscriptions: {"products:productsView": [Subscription, ...]}
          ├── subscribe(view, kind, cb) → unsubscribe()
          ├── unsubscribe(view, kind, cb=None)
          ├── notify(kind, Notification) → delivered count
          └── stats() / open_circuits()

Tags:
    cache, subscriptions, fan-out, self-healing, maxisync

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from maxisync.core.circuit_breaker import CircuitBreaker
from maxisync.core.enums import EntityKind
from maxisync.core.errors import InvalidArgumentError
from maxisync.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Notification:
    """What a view callback receives for every change to a kind."""

    action: str
    data: Any
    data_type: EntityKind
    timestamp: float = field(default_factory=time.time)
    source: str = "cache-store"


NotificationCallback = Callable[[Notification], Any]


@dataclass
class Subscription:
    """One registered view callback."""

    kind: EntityKind
    view_name: str
    callback: NotificationCallback
    breaker: CircuitBreaker = field(default_factory=CircuitBreaker)
    call_count: int = 0
    last_called: float | None = None
    subscribed_at: float = field(default_factory=time.time)

    @property
    def key(self) -> str:
        return subscription_key(self.kind, self.view_name)

    @property
    def error_count(self) -> int:
        return self.breaker.failure_count


def subscription_key(kind: EntityKind, view_name: str) -> str:
    return f"{kind.value}:{view_name}"


class SubscriptionRegistry:
    """Per-(kind, view) callback lists with call and error accounting."""

    def __init__(self, *, error_threshold: int = 5) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._open_circuits: list[Subscription] = []
        self._error_threshold = error_threshold
        self._tasks: set[asyncio.Task] = set()

    def subscribe(
        self,
        view_name: str,
        kind: EntityKind | str,
        callback: NotificationCallback,
    ) -> Callable[[], int]:
        if not isinstance(view_name, str) or not view_name.strip():
            raise InvalidArgumentError("view_name must be a non-empty string", argument="view_name")
        if not isinstance(kind, (str, EntityKind)):
            raise InvalidArgumentError("kind must be an entity kind", argument="kind")
        try:
            kind = EntityKind.coerce(kind)
        except ValueError:
            raise InvalidArgumentError(f"Unknown entity kind: {kind!r}", argument="kind") from None
        if not callable(callback):
            raise InvalidArgumentError("callback must be callable", argument="callback")

        subscription = Subscription(
            kind=kind,
            view_name=view_name,
            callback=callback,
            breaker=CircuitBreaker(
                name=subscription_key(kind, view_name),
                failure_threshold=self._error_threshold,
            ),
        )
        self._subscriptions.setdefault(subscription.key, []).append(subscription)
        logger.debug("view_subscribed", key=subscription.key)

        def unsubscribe() -> int:
            return self._discard(subscription)

        return unsubscribe

    def unsubscribe(
        self,
        view_name: str,
        kind: EntityKind | str,
        callback: NotificationCallback | None = None,
    ) -> int:
        """Remove one callback, or every callback of the view for that kind."""
        key = subscription_key(EntityKind.coerce(kind), view_name)
        subscriptions = self._subscriptions.get(key)
        if not subscriptions:
            return 0
        if callback is None:
            removed = len(subscriptions)
            del self._subscriptions[key]
        else:
            kept = [s for s in subscriptions if s.callback != callback]
            removed = len(subscriptions) - len(kept)
            if kept:
                self._subscriptions[key] = kept
            else:
                del self._subscriptions[key]
        logger.debug("view_unsubscribed", key=key, removed=removed)
        return removed

    def _discard(self, subscription: Subscription) -> int:
        subscriptions = self._subscriptions.get(subscription.key)
        if not subscriptions or subscription not in subscriptions:
            return 0
        subscriptions.remove(subscription)
        if not subscriptions:
            del self._subscriptions[subscription.key]
        return 1

    def is_subscribed(self, view_name: str, kind: EntityKind | str) -> bool:
        key = subscription_key(EntityKind.coerce(kind), view_name)
        return bool(self._subscriptions.get(key))

    def subscriptions_for(self, kind: EntityKind) -> list[Subscription]:
        prefix = f"{kind.value}:"
        return [
            sub
            for key, subs in self._subscriptions.items()
            if key.startswith(prefix)
            for sub in subs
        ]

    def notify(self, kind: EntityKind, notification: Notification) -> int:
        """Invoke every callback registered for ``kind``.

        Returns:
            Number of callbacks that completed without raising.
        """
        delivered = 0
        for subscription in self.subscriptions_for(kind):
            if subscription.breaker.is_open:
                continue
            subscription.call_count += 1
            subscription.last_called = time.time()
            try:
                result = subscription.callback(notification)
                if inspect.isawaitable(result):
                    self._schedule(subscription, result)
            except Exception as exc:
                self._failed(subscription, exc)
                continue
            subscription.breaker.record_success()
            delivered += 1
        return delivered

    def _schedule(self, subscription: Subscription, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise

        async def run() -> None:
            try:
                await awaitable
            except Exception as exc:
                self._failed(subscription, exc)

        task = loop.create_task(run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _failed(self, subscription: Subscription, exc: Exception) -> None:
        logger.error(
            "subscriber_error",
            key=subscription.key,
            error=str(exc),
            error_type=type(exc).__name__,
            error_count=subscription.breaker.failure_count + 1,
        )
        if subscription.breaker.record_failure(exc):
            logger.warning(
                "subscriber_circuit_open",
                key=subscription.key,
                failures=subscription.breaker.failure_count,
            )
            self._discard(subscription)
            self._open_circuits.append(subscription)

    def open_circuits(self) -> list[dict[str, Any]]:
        return [s.breaker.to_dict() for s in self._open_circuits]

    def count(self) -> int:
        return sum(len(subs) for subs in self._subscriptions.values())

    def stats(self) -> dict[str, Any]:
        return {
            key: {
                "callbacks": len(subs),
                "call_count": sum(s.call_count for s in subs),
                "error_count": sum(s.error_count for s in subs),
                "last_called": max((s.last_called or 0 for s in subs), default=0) or None,
            }
            for key, subs in self._subscriptions.items()
        }

    def clear(self) -> None:
        self._subscriptions.clear()
        self._open_circuits.clear()


__all__ = [
    "Notification",
    "NotificationCallback",
    "Subscription",
    "SubscriptionRegistry",
    "subscription_key",
]
