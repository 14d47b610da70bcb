"""Typed payloads for the events the synchronization core emits and consumes.

Domain records travel as plain ``dict`` (the backend's JSON shape). Events the
core itself builds use the dataclasses below. :data:`EVENT_PAYLOAD_TYPES`
maps each known event name to its payload type so a bus created with
``strict_payloads=True`` can reject a mismatched emission at the call site.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from maxisync.core.enums import EntityKind


class Events:
    """Event name constants."""

    STATS = "eventmanager:stats"

    PRODUCT_CREATED = "data:product:created"
    PRODUCT_UPDATED = "data:product:updated"
    PRODUCT_DELETED = "data:product:deleted"
    PRODUCT_STOCK_UPDATED = "data:product:stock-updated"
    SALE_CREATED = "data:sale:created"
    TRANSACTION_CREATED = "data:transaction:created"
    BATCH_UPDATED = "data:batch:updated"

    EXTERNAL_PRODUCT_UPDATED = "external:product-updated"
    EXTERNAL_STOCK_UPDATED = "external:stock-updated"
    EXTERNAL_PRODUCT_SOLD = "external:product-sold"

    PRODUCT_SYNCED = "sync:product-synced"
    STOCK_SYNCED = "sync:stock-synced"
    PRODUCTS_CHANGED = "sync:products-changed"

    CACHE_UPDATED = "cache:updated"
    CACHE_INVALIDATE = "cache:invalidate"
    CACHE_INVALIDATED = "cache:invalidated"
    CACHE_CLEARED = "cache:cleared"

    OFFLINE_QUEUED = "offline:queued"
    OFFLINE_REPLAYED = "offline:replayed"
    OFFLINE_FAILED = "offline:failed"
    OFFLINE_DRAINED = "offline:drained"

    CONNECTION_LOST = "connection:lost"
    CONNECTION_RESTORED = "connection:restored"

    @staticmethod
    def domain(kind: EntityKind | str, action: str) -> str:
        """``data:<noun>:<action>`` for an entity kind."""
        return f"data:{EntityKind.coerce(kind).noun}:{action}"


@dataclass
class EmitStats:
    """Payload of the ``eventmanager:stats`` meta-event."""

    event_name: str
    success_count: int
    error_count: int
    duration_ms: float
    listener_count: int


@dataclass
class StockUpdate:
    """Stock change for a single product.

    ``product`` carries the full updated record when the producer has it;
    otherwise only ``new_stock`` is known and the cache is patched in place.
    """

    product_id: str
    new_stock: int | None = None
    old_stock: int | None = None
    product: dict[str, Any] | None = None
    quantity_sold: int | None = None
    source_view: str = "unknown"
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StockUpdate:
        """Build from the push channel's camelCase shape."""
        product = data.get("product")
        product_id = data.get("productId") or data.get("product_id")
        if not product_id and isinstance(product, dict):
            product_id = product.get("_id")
        if not product_id:
            product_id = data.get("_id")
        return cls(
            product_id=product_id or "",
            new_stock=data.get("newStock", data.get("new_stock")),
            old_stock=data.get("oldStock", data.get("old_stock")),
            product=product if isinstance(product, dict) else None,
            quantity_sold=data.get("quantitySold", data.get("quantity_sold")),
            source_view=data.get("sourceView", data.get("source_view", "unknown")),
            timestamp=data.get("timestamp") or time.time(),
        )


@dataclass
class SyncConfirmation:
    """Payload of ``sync:*-synced`` confirmation events."""

    product_id: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class CacheUpdated:
    """Payload of ``cache:updated``."""

    entity_kind: EntityKind
    action: str
    record_count: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class OfflineOperationEvent:
    """Payload of ``offline:*`` events."""

    operation_id: str
    description: str
    error: str | None = None


def _build_payload_types() -> dict[str, type | tuple[type, ...]]:
    types: dict[str, type | tuple[type, ...]] = {
        Events.STATS: EmitStats,
        Events.PRODUCT_STOCK_UPDATED: StockUpdate,
        Events.EXTERNAL_STOCK_UPDATED: StockUpdate,
        Events.EXTERNAL_PRODUCT_SOLD: StockUpdate,
        Events.EXTERNAL_PRODUCT_UPDATED: dict,
        Events.PRODUCT_SYNCED: SyncConfirmation,
        Events.STOCK_SYNCED: SyncConfirmation,
        Events.BATCH_UPDATED: list,
        Events.CACHE_UPDATED: CacheUpdated,
        Events.OFFLINE_QUEUED: OfflineOperationEvent,
        Events.OFFLINE_REPLAYED: OfflineOperationEvent,
        Events.OFFLINE_FAILED: OfflineOperationEvent,
    }
    for kind in EntityKind:
        types[Events.domain(kind, "created")] = dict
        types[Events.domain(kind, "updated")] = dict
        types[Events.domain(kind, "deleted")] = str
        types[Events.domain(kind, "refreshed")] = (list, dict)
    return types


EVENT_PAYLOAD_TYPES = _build_payload_types()


def payload_type_for(event_name: str) -> type | tuple[type, ...] | None:
    """Declared payload type for an event name, or None if undeclared."""
    return EVENT_PAYLOAD_TYPES.get(event_name)


__all__ = [
    "Events",
    "EmitStats",
    "StockUpdate",
    "SyncConfirmation",
    "CacheUpdated",
    "OfflineOperationEvent",
    "EVENT_PAYLOAD_TYPES",
    "payload_type_for",
]
