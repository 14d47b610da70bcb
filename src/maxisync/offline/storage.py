"""Persistence backends for the offline operation queue.

Only the serializable part of an operation is stored (id, description,
enqueue time, attempts, last error and the ``ApiRequest`` descriptor). The
executable action is rebuilt from the request when the queue is restored.

Example::

    storage = JsonFileQueueStorage(Path("~/.maxisync/offline_queue.json").expanduser())
    storage.save(QueueSnapshot(pending=[...], dead_letters=[]))
    snapshot = storage.load()
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from maxisync.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class QueueSnapshot:
    """Serialized queue contents."""

    pending: list[dict[str, Any]] = field(default_factory=list)
    dead_letters: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"pending": self.pending, "dead_letters": self.dead_letters}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueSnapshot:
        return cls(
            pending=list(data.get("pending", [])),
            dead_letters=list(data.get("dead_letters", [])),
        )


class QueueStorage(Protocol):
    """Where the offline queue keeps its serialized state."""

    def load(self) -> QueueSnapshot:
        ...

    def save(self, snapshot: QueueSnapshot) -> None:
        ...


class MemoryQueueStorage:
    """Keeps the snapshot in memory; lost when the process exits."""

    def __init__(self) -> None:
        self._snapshot = QueueSnapshot()

    def load(self) -> QueueSnapshot:
        return QueueSnapshot.from_dict(self._snapshot.to_dict())

    def save(self, snapshot: QueueSnapshot) -> None:
        self._snapshot = QueueSnapshot.from_dict(snapshot.to_dict())


class JsonFileQueueStorage:
    """Stores the snapshot as a JSON file, written atomically."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> QueueSnapshot:
        if not self.path.exists():
            return QueueSnapshot()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("offline_queue_load_failed", path=str(self.path), error=str(exc))
            return QueueSnapshot()
        if not isinstance(data, dict):
            logger.error("offline_queue_corrupt", path=str(self.path))
            return QueueSnapshot()
        return QueueSnapshot.from_dict(data)

    def save(self, snapshot: QueueSnapshot) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(snapshot.to_dict(), indent=2, default=str), encoding="utf-8")
        tmp.replace(self.path)
        logger.debug(
            "offline_queue_saved",
            path=str(self.path),
            pending=len(snapshot.pending),
            dead_letters=len(snapshot.dead_letters),
        )


__all__ = ["QueueSnapshot", "QueueStorage", "MemoryQueueStorage", "JsonFileQueueStorage"]
