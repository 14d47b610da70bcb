"""
Offline operation queue: capture writes while the backend is unreachable
and replay them, in order, once it is back.

Manifesto:
    A sale rung up while the backend is down must not vanish. Writes that
    cannot reach the backend are queued with a description and an
    executable action and replayed strictly first-in first-out after the
    connection returns. What happens to a write that still fails on replay
    is an explicit policy rather than a hidden choice.

Architecture:
    ::

        OfflineQueue(bus, storage, policy=DROP)
          ├── add_to_offline_queue(op)   ─ append + persist + offline:queued
          ├── process_offline_queue()    ─ FIFO replay → ReplayReport
          │     success → offline:replayed
          │     failure → policy:
          │         DROP         log, drop             (offline:failed)
          │         RETRY        ExponentialBackoff, then drop
          │         DEAD_LETTER  keep in dead_letters  (offline:failed)
          ├── requeue_dead_letter(id) / discard_dead_letter(id)
          └── restore(factory)           ─ rebuild actions from ApiRequest

Guardrails:
    ❌ DON'T: Replay operations concurrently
    ✅ DO: Finish operation N (success or failure) before starting N+1

    ❌ DON'T: Re-queue failed operations at the tail (infinite replay loops)
    ✅ DO: Drop, retry a bounded number of times, or dead-letter

Tags:
    offline, queue, replay, dead-letter, retry, maxisync

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import time
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from maxisync.api.client import ApiRequest, ApiResponse
from maxisync.core.enums import QueuePolicy
from maxisync.core.errors import InvalidArgumentError, QueueReplayError
from maxisync.core.logging import get_logger
from maxisync.core.retry import ExponentialBackoff, RetryStrategy
from maxisync.events.bus import EventBus
from maxisync.events.payloads import Events, OfflineOperationEvent
from maxisync.offline.storage import MemoryQueueStorage, QueueSnapshot, QueueStorage

logger = get_logger(__name__)

Action = Callable[[], Any]
Replayer = Callable[[ApiRequest], Awaitable[ApiResponse]]
Sleep = Callable[[float], Awaitable[None]]


def _operation_id() -> str:
    return f"op_{uuid.uuid4().hex[:12]}"


@dataclass
class OfflineOperation:
    """A deferred write.

    Attributes:
        description: Human-readable summary ("Crear venta LenteX x2")
        action: Zero-argument callable returning a result or an awaitable
        request: Serializable request used to rebuild ``action`` after a restart
        id: Generated identifier
        queued_at: Enqueue time (epoch seconds)
        attempts: Replay attempts made so far
        last_error: Error of the most recent failed attempt
    """

    description: str
    action: Action | None = None
    request: ApiRequest | None = None
    id: str = field(default_factory=_operation_id)
    queued_at: float = field(default_factory=time.time)
    attempts: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "queued_at": self.queued_at,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "request": self.request.to_dict() if self.request else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OfflineOperation:
        request = data.get("request")
        return cls(
            description=data.get("description", ""),
            request=ApiRequest.from_dict(request) if request else None,
            id=data.get("id") or _operation_id(),
            queued_at=data.get("queued_at") or time.time(),
            attempts=data.get("attempts", 0),
            last_error=data.get("last_error"),
        )


@dataclass
class ReplayReport:
    """Outcome of one ``process_offline_queue`` run, ids in processing order."""

    processed: list[str] = field(default_factory=list)
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    dead_lettered: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.processed)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": list(self.processed),
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
            "dead_lettered": list(self.dead_lettered),
        }


class OfflineQueue:
    """Ordered queue of deferred writes, replayed FIFO on reconnect."""

    def __init__(
        self,
        bus: EventBus,
        *,
        storage: QueueStorage | None = None,
        policy: QueuePolicy = QueuePolicy.DROP,
        replay_delay: float = 0.1,
        retry_strategy: RetryStrategy | None = None,
        replayer: Replayer | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.bus = bus
        self.storage = storage or MemoryQueueStorage()
        self.policy = QueuePolicy(policy)
        self.replay_delay = replay_delay
        self.retry_strategy = retry_strategy or ExponentialBackoff()
        self._replayer = replayer
        self._sleep = sleep
        self._pending: deque[OfflineOperation] = deque()
        self._dead_letters: list[OfflineOperation] = []
        self._processing = False
        self._replay_task: asyncio.Task[Any] | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    # ── Enqueue ──────────────────────────────────────────────────

    def add_to_offline_queue(self, operation: OfflineOperation) -> OfflineOperation:
        """Append ``operation`` to the tail of the queue."""
        if not isinstance(operation, OfflineOperation):
            raise InvalidArgumentError("operation must be an OfflineOperation", argument="operation")
        if operation.action is None and operation.request is None:
            raise InvalidArgumentError(
                "operation needs an action or a request", argument="operation"
            )
        if operation.action is not None and not callable(operation.action):
            raise InvalidArgumentError("operation action must be callable", argument="action")

        self._pending.append(operation)
        self._persist()
        logger.info(
            "offline_operation_queued",
            operation_id=operation.id,
            description=operation.description,
            pending=len(self._pending),
        )
        self.bus.emit(
            Events.OFFLINE_QUEUED,
            OfflineOperationEvent(operation_id=operation.id, description=operation.description),
        )
        return operation

    def enqueue(
        self,
        description: str,
        action: Action | None = None,
        *,
        request: ApiRequest | None = None,
    ) -> OfflineOperation:
        return self.add_to_offline_queue(
            OfflineOperation(description=description, action=action, request=request)
        )

    # ── Replay ───────────────────────────────────────────────────

    async def process_offline_queue(self) -> ReplayReport:
        """Replay queued operations one at a time, oldest first.

        A call made from inside a replayed operation returns an empty report.
        A call from another task waits for the running replay to finish, then
        replays whatever was queued in the meantime.
        """
        report = ReplayReport()
        while self._processing:
            if asyncio.current_task() is self._replay_task:
                logger.debug("offline_replay_already_running")
                return report
            logger.debug("offline_replay_waiting", pending=len(self._pending))
            await self._idle.wait()
        if not self._pending:
            return report

        self._processing = True
        self._replay_task = asyncio.current_task()
        self._idle.clear()
        logger.info("offline_replay_started", pending=len(self._pending), policy=self.policy.value)
        try:
            first = True
            while self._pending:
                if not first and self.replay_delay > 0:
                    await self._sleep(self.replay_delay)
                first = False

                operation = self._pending.popleft()
                report.processed.append(operation.id)
                error = await self._replay(operation)

                if error is None:
                    report.succeeded.append(operation.id)
                    logger.info("offline_operation_replayed", operation_id=operation.id)
                    self._persist()
                    self.bus.emit(
                        Events.OFFLINE_REPLAYED,
                        OfflineOperationEvent(
                            operation_id=operation.id, description=operation.description
                        ),
                    )
                    continue

                operation.last_error = error
                report.failed.append(operation.id)
                if self.policy is QueuePolicy.DEAD_LETTER:
                    self._dead_letters.append(operation)
                    report.dead_lettered.append(operation.id)
                    logger.warning(
                        "offline_operation_dead_lettered",
                        operation_id=operation.id,
                        description=operation.description,
                        error=error,
                    )
                else:
                    logger.error(
                        "offline_operation_dropped",
                        operation_id=operation.id,
                        description=operation.description,
                        attempts=operation.attempts,
                        error=error,
                    )
                self._persist()
                self.bus.emit(
                    Events.OFFLINE_FAILED,
                    OfflineOperationEvent(
                        operation_id=operation.id,
                        description=operation.description,
                        error=error,
                    ),
                )
        finally:
            self._processing = False
            self._replay_task = None
            self._idle.set()

        logger.info(
            "offline_replay_finished",
            succeeded=len(report.succeeded),
            failed=len(report.failed),
        )
        self.bus.emit(Events.OFFLINE_DRAINED, report)
        return report

    async def _replay(self, operation: OfflineOperation) -> str | None:
        """Run ``operation`` under the queue policy; returns the final error or None."""
        error = await self._attempt(operation)
        if error is None or self.policy is not QueuePolicy.RETRY:
            return error

        retries = 0
        while error is not None and self.retry_strategy.should_retry(
            retries, QueueReplayError(error)
        ):
            delay = self.retry_strategy.next_delay(retries)
            logger.info(
                "offline_operation_retry",
                operation_id=operation.id,
                retry=retries + 1,
                delay_seconds=round(delay, 3),
            )
            await self._sleep(delay)
            retries += 1
            error = await self._attempt(operation)
        return error

    async def _attempt(self, operation: OfflineOperation) -> str | None:
        operation.attempts += 1
        action = operation.action
        if action is None and operation.request is not None and self._replayer is not None:
            action = functools.partial(self._replayer, operation.request)
        if action is None:
            return "operation has no executable action"

        try:
            result = action()
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            return str(exc) or type(exc).__name__

        if isinstance(result, ApiResponse) and not result.success:
            return result.message or "replay failed"
        return None

    # ── Dead letters ─────────────────────────────────────────────

    def dead_letters(self) -> list[OfflineOperation]:
        return list(self._dead_letters)

    def requeue_dead_letter(self, operation_id: str) -> bool:
        """Move a dead-lettered operation back to the tail of the queue."""
        for index, operation in enumerate(self._dead_letters):
            if operation.id == operation_id:
                del self._dead_letters[index]
                operation.attempts = 0
                operation.last_error = None
                self._pending.append(operation)
                self._persist()
                logger.info("offline_dead_letter_requeued", operation_id=operation_id)
                return True
        return False

    def discard_dead_letter(self, operation_id: str) -> bool:
        before = len(self._dead_letters)
        self._dead_letters = [op for op in self._dead_letters if op.id != operation_id]
        if len(self._dead_letters) == before:
            return False
        self._persist()
        return True

    # ── Persistence ──────────────────────────────────────────────

    def _persist(self) -> None:
        self.storage.save(
            QueueSnapshot(
                pending=[op.to_dict() for op in self._pending],
                dead_letters=[op.to_dict() for op in self._dead_letters],
            )
        )

    def restore(self, factory: Callable[[ApiRequest], Action] | None = None) -> int:
        """Load persisted operations, rebuilding actions from their requests.

        Operations without a request cannot be rebuilt and are discarded.
        Without ``factory`` actions are left empty and the queue's replayer
        re-issues the requests.

        Returns:
            Number of pending operations restored.
        """
        snapshot = self.storage.load()
        known = {op.id for op in self._pending}
        restored = 0
        for data in snapshot.pending:
            operation = OfflineOperation.from_dict(data)
            if operation.id in known:
                continue
            if operation.request is None:
                logger.warning(
                    "offline_operation_not_restorable",
                    operation_id=operation.id,
                    description=operation.description,
                )
                continue
            if factory is not None:
                operation.action = factory(operation.request)
            self._pending.append(operation)
            restored += 1
        self._dead_letters = [
            OfflineOperation.from_dict(data) for data in snapshot.dead_letters
        ]
        self._persist()
        logger.info(
            "offline_queue_restored",
            pending=restored,
            dead_letters=len(self._dead_letters),
        )
        return restored

    # ── Introspection ────────────────────────────────────────────

    def pending(self) -> list[OfflineOperation]:
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def is_processing(self) -> bool:
        return self._processing

    def stats(self) -> dict[str, Any]:
        return {
            "pending": len(self._pending),
            "dead_letters": len(self._dead_letters),
            "policy": self.policy.value,
            "processing": self._processing,
            "oldest_queued_at": self._pending[0].queued_at if self._pending else None,
        }

    def clear(self) -> None:
        self._pending.clear()
        self._dead_letters.clear()
        self._persist()


__all__ = ["OfflineOperation", "OfflineQueue", "ReplayReport", "Action", "Replayer"]
