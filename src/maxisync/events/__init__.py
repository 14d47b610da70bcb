"""In-process event system.

Usage::

    from maxisync.events import EventBus, Events

    bus = EventBus()
    bus.on(Events.PRODUCT_CREATED, lambda product: print(product["_id"]))
    bus.emit(Events.PRODUCT_CREATED, {"_id": "p1", "name": "LenteX"})

Modules
-------
bus         EventBus -- priority ordering, error isolation, history
payloads    Event name constants and typed payloads
"""

from maxisync.events.bus import EventBus, HistoryEntry, Listener
from maxisync.events.payloads import (
    EVENT_PAYLOAD_TYPES,
    CacheUpdated,
    EmitStats,
    Events,
    OfflineOperationEvent,
    StockUpdate,
    SyncConfirmation,
)

__all__ = [
    "EventBus",
    "HistoryEntry",
    "Listener",
    "Events",
    "EmitStats",
    "StockUpdate",
    "SyncConfirmation",
    "CacheUpdated",
    "OfflineOperationEvent",
    "EVENT_PAYLOAD_TYPES",
]
