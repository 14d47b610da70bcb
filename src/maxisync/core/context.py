"""
Explicitly wired synchronization context.

Every component receives its collaborators through its constructor;
:func:`build_context` is the one place where they are created and connected.
There are no module-level singletons, so each test can build an isolated
context with fake fetchers and a controllable clock.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from maxisync.api.client import ApiClient
from maxisync.cache.store import CacheStore, Fetcher
from maxisync.core.enums import EntityKind
from maxisync.core.logging import get_logger
from maxisync.core.retry import ExponentialBackoff
from maxisync.core.settings import SyncSettings, get_settings
from maxisync.events.bus import EventBus
from maxisync.offline.queue import OfflineQueue
from maxisync.offline.storage import JsonFileQueueStorage, QueueStorage
from maxisync.sync.connection import ConnectionMonitor
from maxisync.sync.coordinator import Notifier, SyncCoordinator
from maxisync.sync.helper import SyncHelper
from maxisync.sync.push import PushChannel

logger = get_logger(__name__)


@dataclass
class SyncContext:
    """All synchronization components of one client session.

    Attributes:
        settings: Validated configuration
        bus: Event bus shared by every component
        client: Backend API client
        cache: Cache store and view subscription registry
        queue: Offline operation queue
        push: Push channel state machine
        coordinator: Sync coordinator
        helper: View-side change announcements
        monitor: Backend heartbeat
    """

    settings: SyncSettings
    bus: EventBus
    client: ApiClient
    cache: CacheStore
    queue: OfflineQueue
    push: PushChannel
    coordinator: SyncCoordinator
    helper: SyncHelper
    monitor: ConnectionMonitor

    async def start(self, *, restore_queue: bool = True) -> None:
        """Restore persisted writes and go online (draining the queue)."""
        if restore_queue:
            self.queue.restore()
        await self.push.connect()

    async def close(self) -> None:
        await self.monitor.stop()
        self.push.disconnect()
        self.coordinator.unbind_events()
        self.cache.unbind_events()
        await self.client.aclose()


def build_context(
    settings: SyncSettings | None = None,
    *,
    client: ApiClient | None = None,
    fetchers: Mapping[EntityKind, Fetcher] | None = None,
    storage: QueueStorage | None = None,
    clock: Callable[[], float] = time.time,
    notifier: Notifier | None = None,
) -> SyncContext:
    """Create and wire every component.

    Args:
        settings: Configuration (defaults to :func:`get_settings`)
        client: API client (defaults to one built from ``settings``)
        fetchers: Per-kind list fetchers overriding ``client.fetcher_for``
        storage: Offline queue storage (defaults to a JSON file under ``data_dir``)
        clock: Time source for cache staleness
        notifier: User-facing notifier for pushed changes
    """
    settings = settings or get_settings()
    client = client or ApiClient(
        settings.api_base_url,
        timeout=settings.api_timeout_seconds,
    )

    bus = EventBus(
        history_size=settings.event_history_size,
        error_threshold=settings.listener_error_threshold,
        debug=settings.event_debug,
        strict_payloads=settings.strict_payloads,
    )

    all_fetchers = client.fetchers()
    all_fetchers.update(fetchers or {})
    cache = CacheStore(
        bus,
        all_fetchers,
        max_age=settings.cache_max_age_seconds,
        subscriber_error_threshold=settings.subscriber_error_threshold,
        memory_threshold_bytes=settings.cache_memory_threshold_bytes,
        error_rate_threshold=settings.health_error_rate_threshold,
        clock=clock,
    )

    queue = OfflineQueue(
        bus,
        storage=storage or JsonFileQueueStorage(settings.offline_queue_path),
        policy=settings.offline_queue_policy,
        replay_delay=settings.offline_replay_delay_seconds,
        retry_strategy=ExponentialBackoff(
            max_retries=settings.offline_max_retries,
            base_delay=settings.offline_retry_base_delay_seconds,
        ),
        replayer=client.replay,
    )

    push = PushChannel(bus, queue)
    coordinator = SyncCoordinator(bus, cache, queue=queue, push=push, notifier=notifier)
    helper = SyncHelper(bus, client)
    monitor = ConnectionMonitor(
        client, push, cache, interval=settings.heartbeat_interval_seconds
    )

    cache.bind_events()
    coordinator.bind_events()

    logger.info(
        "sync_context_built",
        api_base_url=settings.api_base_url,
        queue_policy=settings.offline_queue_policy.value,
    )
    return SyncContext(
        settings=settings,
        bus=bus,
        client=client,
        cache=cache,
        queue=queue,
        push=push,
        coordinator=coordinator,
        helper=helper,
        monitor=monitor,
    )


__all__ = ["SyncContext", "build_context"]
