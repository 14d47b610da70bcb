"""Base view controller.

A view controller owns a local copy of the records it shows. It reads them
through the cache store, subscribes to changes of its entity kinds, and
re-renders from its local copy whenever a notification arrives. Rendering
here produces row dicts; a UI layer would draw them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar

from maxisync.cache.records import record_id
from maxisync.cache.subscriptions import Notification
from maxisync.core.enums import EntityKind
from maxisync.core.logging import LogContext, get_logger
from maxisync.events.payloads import StockUpdate

if TYPE_CHECKING:
    from maxisync.core.context import SyncContext

logger = get_logger(__name__)


class ViewController:
    """Subscribes to the cache for ``kinds`` and keeps a rendered local copy."""

    view_name: ClassVar[str] = "view"
    kinds: ClassVar[tuple[EntityKind, ...]] = ()

    def __init__(self, ctx: SyncContext) -> None:
        self.ctx = ctx
        self.items: dict[EntityKind, list[dict[str, Any]]] = {kind: [] for kind in self.kinds}
        self.rows: list[dict[str, Any]] = []
        self.render_count = 0
        self.needs_reload = False
        self.notifications: list[Notification] = []
        self._unsubscribers: list = []

    @property
    def primary_kind(self) -> EntityKind:
        return self.kinds[0]

    @property
    def mounted(self) -> bool:
        return bool(self._unsubscribers)

    async def mount(self) -> None:
        if not self.mounted:
            for kind in self.kinds:
                self._unsubscribers.append(
                    self.ctx.cache.subscribe(self.view_name, kind, self.on_notification)
                )
        await self.load()

    def unmount(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    async def load(self) -> list[dict[str, Any]]:
        async with LogContext(view=self.view_name):
            for kind in self.kinds:
                self.items[kind] = await self.ctx.cache.get_data(kind)
            self.needs_reload = False
            logger.debug("view_loaded", kinds=[k.value for k in self.kinds])
            return self.render()

    def on_notification(self, notification: Notification) -> None:
        with LogContext(view=self.view_name):
            self.notifications.append(notification)
            self.apply(notification)
            self.render()

    def apply(self, notification: Notification) -> None:
        """Apply a cache notification to the local copy."""
        items = self.items.setdefault(notification.data_type, [])
        action, data = notification.action, notification.data

        if action == "created" and isinstance(data, dict):
            if not any(record_id(i) == record_id(data) for i in items):
                items.append(dict(data))
        elif action == "updated" and isinstance(data, dict):
            self._upsert(items, data)
        elif action == "deleted":
            rid = record_id(data) if isinstance(data, dict) else data
            items[:] = [i for i in items if record_id(i) != rid]
        elif action == "refreshed":
            records = data if isinstance(data, list) else [data] if isinstance(data, dict) else []
            items[:] = [dict(r) for r in records]
        elif action == "stock-updated" and isinstance(data, StockUpdate):
            if data.product is not None:
                self._upsert(items, {"_id": data.product_id, **data.product})
            elif data.new_stock is not None:
                for item in items:
                    if record_id(item) == data.product_id:
                        item["stock"] = data.new_stock
        elif action == "cache-invalidated":
            self.needs_reload = True
        else:
            logger.debug("view_ignored_notification", action=action)

    @staticmethod
    def _upsert(items: list[dict[str, Any]], record: dict[str, Any]) -> None:
        rid = record_id(record)
        for index, item in enumerate(items):
            if record_id(item) == rid:
                items[index] = dict(record)
                return
        items.append(dict(record))

    def build_rows(self) -> list[dict[str, Any]]:
        return [dict(item) for item in self.items.get(self.primary_kind, [])]

    def render(self) -> list[dict[str, Any]]:
        self.rows = self.build_rows()
        self.render_count += 1
        return self.rows


__all__ = ["ViewController"]
