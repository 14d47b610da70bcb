"""Offline operation queue and its persistence backends."""

from maxisync.offline.queue import OfflineOperation, OfflineQueue, ReplayReport
from maxisync.offline.storage import (
    JsonFileQueueStorage,
    MemoryQueueStorage,
    QueueSnapshot,
    QueueStorage,
)

__all__ = [
    "OfflineOperation",
    "OfflineQueue",
    "ReplayReport",
    "JsonFileQueueStorage",
    "MemoryQueueStorage",
    "QueueSnapshot",
    "QueueStorage",
]
