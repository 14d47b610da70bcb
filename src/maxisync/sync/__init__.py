"""Synchronization between local writes, server pushes, the cache and views.

Modules
-------
coordinator   SyncCoordinator -- product/stock fan-out, offline-aware writes
push          PushChannel -- connection state machine, push buffering
connection    ConnectionMonitor -- heartbeat driving the push channel
helper        SyncHelper -- view-side change announcements
"""

from maxisync.sync.connection import ConnectionMonitor
from maxisync.sync.coordinator import SyncCoordinator
from maxisync.sync.helper import SyncHelper
from maxisync.sync.push import PushChannel

__all__ = ["ConnectionMonitor", "PushChannel", "SyncCoordinator", "SyncHelper"]
