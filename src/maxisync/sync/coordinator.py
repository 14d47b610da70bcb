"""
Sync coordinator: turns product and stock events, local or pushed from the
server, into cache mutations and a coarse-grained broadcast to views.

Manifesto:
    The cache store's subscriptions are per entity kind. Some consumers
    (the barcode tool, a stock badge) only want a raw ``(event_type, data)``
    feed of product changes, whatever their origin. The coordinator owns
    that feed and is the one place where pushed updates enter the cache.

Architecture:
    ::

        bus ── data:product:updated ───────┐
            ── data:product:stock-updated ─┤
            ── external:product-updated ───┤──► SyncCoordinator
            ── external:stock-updated ─────┤       ├── CacheStore (upsert / patch)
            ── data:batch:updated ─────────┘       ├── generic subscribers (event_type, data)
                                                   ├── sync:*-synced confirmation
                                                   └── notifier (pushed changes only)

        execute_write(description, action)
            push channel not connected ─┐
            connection failure ─────────┴─► OfflineQueue → ApiResponse(queued=True)

Tags:
    sync, coordinator, push, broadcast, maxisync

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import inspect
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from maxisync.api.client import ApiRequest, ApiResponse
from maxisync.cache.store import CacheStore
from maxisync.core.enums import CacheAction, EntityKind
from maxisync.core.errors import InvalidArgumentError
from maxisync.core.logging import get_logger
from maxisync.events.bus import EventBus
from maxisync.events.payloads import Events, StockUpdate, SyncConfirmation
from maxisync.offline.queue import Action, OfflineQueue

if TYPE_CHECKING:
    from maxisync.sync.push import PushChannel

logger = get_logger(__name__)

SubscriberCallback = Callable[[str, Any], Any]
Notifier = Callable[[str, str], None]

PRODUCT_UPDATED = "product:updated"
STOCK_UPDATED = "stock:updated"
FORCE_REFRESH = "force:refresh"


def log_notifier(message: str, level: str = "info") -> None:
    """Default user-facing notifier: a structured log line."""
    logger.info("user_notification", message=message, level=level)


@dataclass
class GenericSubscriber:
    id: str
    view_name: str
    callback: SubscriberCallback
    error_count: int = 0


class SyncCoordinator:
    """Bridges product/stock events into the cache and a generic view feed."""

    def __init__(
        self,
        bus: EventBus,
        cache: CacheStore,
        *,
        queue: OfflineQueue | None = None,
        push: PushChannel | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.bus = bus
        self.cache = cache
        self.queue = queue
        self.push = push
        self.notifier = notifier or log_notifier
        self._subscribers: dict[str, GenericSubscriber] = {}
        self._unbind: list[Callable[[], int]] = []

    # ── Wiring ───────────────────────────────────────────────────

    def bind_events(self) -> None:
        if self._unbind:
            return
        on = self.bus.on
        self._unbind = [
            on(Events.PRODUCT_UPDATED, self.broadcast_product_update),
            on(Events.PRODUCT_STOCK_UPDATED, self.broadcast_stock_update),
            on(Events.EXTERNAL_PRODUCT_UPDATED, self.handle_external_update),
            on(Events.EXTERNAL_STOCK_UPDATED, self.handle_external_stock_update),
            on(Events.BATCH_UPDATED, self.handle_batch_update),
        ]
        logger.info("sync_coordinator_bound")

    def unbind_events(self) -> None:
        for unsubscribe in self._unbind:
            unsubscribe()
        self._unbind.clear()

    # ── Generic subscribers ──────────────────────────────────────

    def subscribe(self, view_name: str, callback: SubscriberCallback) -> Callable[[], bool]:
        """Register ``callback(event_type, data)``; returns an unsubscribe function."""
        if not isinstance(view_name, str) or not view_name.strip():
            raise InvalidArgumentError("view_name must be a non-empty string", argument="view_name")
        if not callable(callback):
            raise InvalidArgumentError("callback must be callable", argument="callback")

        subscriber_id = f"{view_name}_{uuid.uuid4().hex[:8]}"
        self._subscribers[subscriber_id] = GenericSubscriber(
            id=subscriber_id, view_name=view_name, callback=callback
        )
        logger.debug("sync_subscriber_added", subscriber_id=subscriber_id)
        return lambda: self.unsubscribe(subscriber_id)

    def unsubscribe(self, subscriber_id: str) -> bool:
        return self._subscribers.pop(subscriber_id, None) is not None

    def _notify(self, event_type: str, data: Any) -> int:
        delivered = 0
        for subscriber in list(self._subscribers.values()):
            try:
                subscriber.callback(event_type, data)
                delivered += 1
            except Exception as exc:
                subscriber.error_count += 1
                logger.error(
                    "sync_subscriber_error",
                    subscriber_id=subscriber.id,
                    event_type=event_type,
                    error=str(exc),
                )
        return delivered

    # ── Local changes ────────────────────────────────────────────

    def broadcast_product_update(self, product: Any) -> bool:
        """Upsert ``product`` in the cache and fan it out."""
        if not isinstance(product, dict) or not product.get("_id"):
            logger.warning("sync_product_without_id")
            return False
        self.cache.update_cache(EntityKind.PRODUCTS, CacheAction.UPDATED, product)
        self._notify(PRODUCT_UPDATED, product)
        self.bus.emit(Events.PRODUCT_SYNCED, SyncConfirmation(product_id=str(product["_id"])))
        return True

    def broadcast_stock_update(self, update: StockUpdate | dict[str, Any]) -> bool:
        """Apply a stock change to the cache and fan it out."""
        return self._apply_stock_update(update, source="sync-coordinator")

    def _apply_stock_update(self, update: Any, *, source: str) -> bool:
        if isinstance(update, dict):
            update = StockUpdate.from_dict(update)
        if not isinstance(update, StockUpdate) or not update.product_id:
            logger.warning("sync_stock_without_product_id")
            return False

        if update.product is not None:
            product = dict(update.product)
            product.setdefault("_id", update.product_id)
            self.cache.update_cache(EntityKind.PRODUCTS, CacheAction.UPDATED, product)
        elif update.new_stock is not None:
            self.cache.patch_record(EntityKind.PRODUCTS, update.product_id, {"stock": update.new_stock})

        self.cache.notify_subscribers(EntityKind.PRODUCTS, "stock-updated", update, source=source)
        self._notify(STOCK_UPDATED, update)
        self.bus.emit(Events.STOCK_SYNCED, SyncConfirmation(product_id=update.product_id))
        return True

    def handle_batch_update(self, updates: Any) -> int:
        """Re-emit each product entry of a batch as ``data:product:updated``."""
        if not isinstance(updates, list):
            logger.warning("sync_batch_not_a_list", type=type(updates).__name__)
            return 0
        emitted = 0
        for update in updates:
            if isinstance(update, dict) and update.get("type") == "product":
                self.bus.emit(Events.PRODUCT_UPDATED, update.get("data"))
                emitted += 1
        logger.debug("sync_batch_processed", updates=len(updates), emitted=emitted)
        return emitted

    # ── Pushed changes ───────────────────────────────────────────

    def handle_external_update(self, product: Any) -> bool:
        if not isinstance(product, dict) or not product.get("_id"):
            logger.warning("sync_external_product_without_id")
            return False
        self.cache.update_cache(EntityKind.PRODUCTS, CacheAction.UPDATED, product)
        self.cache.notify_subscribers(EntityKind.PRODUCTS, "updated", product, source="push")
        self._notify(PRODUCT_UPDATED, product)
        self.bus.emit(Events.PRODUCT_SYNCED, SyncConfirmation(product_id=str(product["_id"])))
        self.notifier(f"Producto actualizado: {product.get('name', product['_id'])}", "info")
        return True

    def handle_external_stock_update(self, update: StockUpdate | dict[str, Any]) -> bool:
        if not self._apply_stock_update(update, source="push"):
            return False
        if isinstance(update, dict):
            update = StockUpdate.from_dict(update)
        name = (update.product or {}).get("name", update.product_id)
        self.notifier(f"Stock actualizado: {name}", "info")
        return True

    # ── Global sync ──────────────────────────────────────────────

    async def force_global_sync(self) -> bool:
        """Refresh products from the backend and tell every subscriber."""
        outcome = await self.cache.refresh_data(EntityKind.PRODUCTS)
        if not outcome.success:
            logger.error("force_sync_failed", error=outcome.error)
            return False
        self.bus.emit(Events.PRODUCTS_CHANGED, outcome.records)
        self._notify(FORCE_REFRESH, outcome.records)
        logger.info("force_sync_completed", records=outcome.record_count)
        return True

    # ── Writes ───────────────────────────────────────────────────

    async def execute_write(
        self,
        description: str,
        action: Action,
        *,
        request: ApiRequest | None = None,
    ) -> ApiResponse:
        """Run a backend write, deferring it to the offline queue when offline.

        Returns:
            The write's ``ApiResponse``, or ``ApiResponse(queued=True)`` when
            the write was queued for replay.
        """
        if self.queue is not None and self.push is not None and not self.push.is_connected:
            self.queue.enqueue(description, action, request=request)
            return ApiResponse.deferred()

        result = action()
        if inspect.isawaitable(result):
            result = await result
        if not isinstance(result, ApiResponse):
            result = ApiResponse.ok(result)

        if result.is_connection_error and self.queue is not None:
            logger.warning("write_deferred", description=description, message=result.message)
            self.queue.enqueue(description, action, request=request)
            if self.push is not None:
                self.push.disconnect()
            return ApiResponse.deferred()
        return result

    def stats(self) -> dict[str, Any]:
        return {
            "subscribers": len(self._subscribers),
            "subscriber_names": sorted({s.view_name for s in self._subscribers.values()}),
            "errors": sum(s.error_count for s in self._subscribers.values()),
        }


__all__ = [
    "SyncCoordinator",
    "GenericSubscriber",
    "SubscriberCallback",
    "Notifier",
    "log_notifier",
    "PRODUCT_UPDATED",
    "STOCK_UPDATED",
    "FORCE_REFRESH",
]
