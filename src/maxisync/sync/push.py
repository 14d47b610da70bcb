"""Server-push channel state machine.

The transport (a socket client, a long poll) calls :meth:`PushChannel.receive`
for every server event. The channel decides when an event may be applied:

    DISCONNECTED ──connect()──► CONNECTING ──queue drained──► CONNECTED
         ▲                                                       │
         └──────────────────────disconnect()─────────────────────┘

While not CONNECTED, pushes are buffered. ``connect()`` replays the offline
queue first and only then applies the buffered pushes in arrival order, so a
pushed record never overwrites a local write that was merely delayed.
"""

from __future__ import annotations

from collections import deque
from typing import Any

from maxisync.core.enums import ConnectionState
from maxisync.core.logging import get_logger
from maxisync.events.bus import EventBus
from maxisync.events.payloads import Events, StockUpdate
from maxisync.offline.queue import OfflineQueue, ReplayReport

logger = get_logger(__name__)

PUSH_PRODUCT_UPDATED = "product:updated"
PUSH_STOCK_UPDATED = "product:stock-updated"


class PushChannel:
    """Orders pushed server events against the offline queue replay."""

    def __init__(self, bus: EventBus, queue: OfflineQueue) -> None:
        self.bus = bus
        self.queue = queue
        self._state = ConnectionState.DISCONNECTED
        self._buffer: deque[tuple[str, Any]] = deque()
        self._connected_once = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    async def connect(self) -> ReplayReport:
        """Drain the offline queue, apply buffered pushes, then go live."""
        if self._state is not ConnectionState.DISCONNECTED:
            return ReplayReport()

        self._state = ConnectionState.CONNECTING
        logger.info("push_connecting", queued=len(self.queue), buffered=len(self._buffer))
        report = await self.queue.process_offline_queue()

        # disconnect() may have been called while the queue was draining
        if self._state is not ConnectionState.CONNECTING:
            return report

        while self._buffer:
            self._apply(*self._buffer.popleft())

        self._state = ConnectionState.CONNECTED
        restored = self._connected_once
        self._connected_once = True
        logger.info("push_connected", replayed=len(report.succeeded), failed=len(report.failed))
        if restored:
            self.bus.emit(Events.CONNECTION_RESTORED, report)
        return report

    def disconnect(self) -> None:
        if self._state is ConnectionState.DISCONNECTED:
            return
        self._state = ConnectionState.DISCONNECTED
        logger.warning("push_disconnected")
        self.bus.emit(Events.CONNECTION_LOST, None)

    def receive(self, event: str, payload: Any) -> bool:
        """Accept a server event.

        Returns:
            True if applied now, False if buffered until the next connect.
        """
        if self._state is not ConnectionState.CONNECTED:
            self._buffer.append((event, payload))
            logger.debug("push_buffered", push_event=event, buffered=len(self._buffer))
            return False
        self._apply(event, payload)
        return True

    def _apply(self, event: str, payload: Any) -> None:
        if event == PUSH_PRODUCT_UPDATED:
            product = payload.get("product", payload) if isinstance(payload, dict) else payload
            self.bus.emit(Events.EXTERNAL_PRODUCT_UPDATED, product)
        elif event == PUSH_STOCK_UPDATED:
            if isinstance(payload, StockUpdate):
                update = payload
            elif isinstance(payload, dict):
                update = StockUpdate.from_dict(payload)
            else:
                logger.warning("push_invalid_payload", push_event=event)
                return
            update.source_view = "push"
            self.bus.emit(Events.EXTERNAL_STOCK_UPDATED, update)
        else:
            logger.warning("push_unknown_event", push_event=event)


__all__ = ["PushChannel", "PUSH_PRODUCT_UPDATED", "PUSH_STOCK_UPDATED"]
