"""Backend heartbeat.

Polls ``client.health()`` on an interval and drives the push channel:
an unreachable backend disconnects it (``connection:lost``); a reachable
one reconnects it, which replays the offline queue, and after a loss the
whole cache is refreshed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from maxisync.api.client import ApiClient
from maxisync.cache.store import CacheStore
from maxisync.core.logging import get_logger
from maxisync.sync.push import PushChannel

logger = get_logger(__name__)


class ConnectionMonitor:
    def __init__(
        self,
        client: ApiClient,
        push: PushChannel,
        cache: CacheStore,
        *,
        interval: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.push = push
        self.cache = cache
        self.interval = interval
        self._sleep = sleep
        self._online_before = False
        self._task: asyncio.Task | None = None

    async def check(self) -> bool:
        """Run one heartbeat; returns whether the backend is reachable."""
        response = await self.client.health()
        reachable = not response.is_connection_error

        if reachable and not self.push.is_connected:
            restored = self._online_before
            await self.push.connect()
            if restored:
                logger.info("connection_restored")
                await self.cache.refresh_all_data()
        elif not reachable and self.push.is_connected:
            logger.warning("connection_lost", message=response.message)
            self.push.disconnect()

        if reachable:
            self._online_before = True
        return reachable

    async def run(self) -> None:
        while True:
            await self.check()
            await self._sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


__all__ = ["ConnectionMonitor"]
