"""Tests for maxisync.sync.push — PushChannel ordering against offline replay."""

import asyncio

import pytest

from maxisync.core.enums import ConnectionState
from maxisync.events.bus import EventBus
from maxisync.events.payloads import Events, StockUpdate
from maxisync.offline.queue import OfflineQueue
from maxisync.sync.push import PUSH_PRODUCT_UPDATED, PUSH_STOCK_UPDATED, PushChannel


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def queue(events):
    return OfflineQueue(events, replay_delay=0)


@pytest.fixture
def push(events, queue):
    return PushChannel(events, queue)


def record(events, *names):
    log = []
    for name in names:
        events.on(name, lambda data, name=name: log.append((name, data)))
    return log


class TestStates:
    def test_starts_disconnected(self, push):
        assert push.state is ConnectionState.DISCONNECTED
        assert not push.is_connected

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self, push, events):
        log = record(events, Events.CONNECTION_LOST, Events.CONNECTION_RESTORED)
        await push.connect()
        assert push.is_connected
        assert log == []
        push.disconnect()
        push.disconnect()
        assert [name for name, _ in log] == [Events.CONNECTION_LOST]
        await push.connect()
        assert [name for name, _ in log] == [Events.CONNECTION_LOST, Events.CONNECTION_RESTORED]

    @pytest.mark.asyncio
    async def test_connect_when_connected_is_noop(self, push, queue):
        await push.connect()
        queue.enqueue("later", lambda: None)
        report = await push.connect()
        assert report.total == 0
        assert len(queue) == 1


class TestBuffering:
    def test_push_buffered_while_disconnected(self, push, events):
        log = record(events, Events.EXTERNAL_PRODUCT_UPDATED)
        assert push.receive(PUSH_PRODUCT_UPDATED, {"_id": "p1"}) is False
        assert push.buffered == 1
        assert log == []

    @pytest.mark.asyncio
    async def test_queue_replayed_before_buffered_pushes(self, push, queue, events):
        order = []
        events.on(Events.EXTERNAL_PRODUCT_UPDATED, lambda p: order.append(("push", p["_id"])))

        async def local_write():
            order.append(("replay", "sale-1"))

        queue.enqueue("Crear venta", local_write)
        push.receive(PUSH_PRODUCT_UPDATED, {"product": {"_id": "p1"}})
        push.receive(PUSH_PRODUCT_UPDATED, {"_id": "p2"})
        report = await push.connect()
        assert order == [("replay", "sale-1"), ("push", "p1"), ("push", "p2")]
        assert report.total == 1
        assert push.buffered == 0

    @pytest.mark.asyncio
    async def test_push_during_replay_waits_for_drain(self, push, queue, events):
        order = []
        events.on(Events.EXTERNAL_PRODUCT_UPDATED, lambda p: order.append("push"))

        async def local_write():
            assert push.receive(PUSH_PRODUCT_UPDATED, {"_id": "p1"}) is False
            order.append("replay")

        queue.enqueue("Crear venta", local_write)
        await push.connect()
        assert order == ["replay", "push"]

    @pytest.mark.asyncio
    async def test_disconnect_during_replay_keeps_buffer(self, push, queue):
        async def drops_connection():
            push.disconnect()

        queue.enqueue("write", drops_connection)
        push.receive(PUSH_PRODUCT_UPDATED, {"_id": "p1"})
        await push.connect()
        assert push.state is ConnectionState.DISCONNECTED
        assert push.buffered == 1

    @pytest.mark.asyncio
    async def test_connect_waits_for_replay_already_running(self, push, queue, events):
        order = []
        gate = asyncio.Event()
        events.on(Events.EXTERNAL_PRODUCT_UPDATED, lambda p: order.append("push"))

        async def slow_write():
            await gate.wait()
            order.append("replay")

        queue.enqueue("Crear venta", slow_write)
        replay = asyncio.create_task(queue.process_offline_queue())
        await asyncio.sleep(0)
        assert queue.is_processing

        push.receive(PUSH_PRODUCT_UPDATED, {"_id": "p1"})
        connecting = asyncio.create_task(push.connect())
        for _ in range(3):
            await asyncio.sleep(0)
        assert push.state is ConnectionState.CONNECTING
        assert order == []

        gate.set()
        await replay
        await connecting
        assert order == ["replay", "push"]
        assert push.is_connected

    @pytest.mark.asyncio
    async def test_connected_push_applied_immediately(self, push, events):
        log = record(events, Events.EXTERNAL_PRODUCT_UPDATED)
        await push.connect()
        assert push.receive(PUSH_PRODUCT_UPDATED, {"_id": "p1"}) is True
        assert log == [(Events.EXTERNAL_PRODUCT_UPDATED, {"_id": "p1"})]


class TestPayloads:
    @pytest.mark.asyncio
    async def test_stock_push_tagged(self, push, events):
        log = record(events, Events.EXTERNAL_STOCK_UPDATED)
        await push.connect()
        push.receive(PUSH_STOCK_UPDATED, {"productId": "p1", "newStock": 3, "sourceView": "salesView"})
        update = log[0][1]
        assert isinstance(update, StockUpdate)
        assert update.product_id == "p1"
        assert update.new_stock == 3
        assert update.source_view == "push"

    @pytest.mark.asyncio
    async def test_unknown_and_invalid_events_ignored(self, push, events):
        log = record(events, Events.EXTERNAL_STOCK_UPDATED, Events.EXTERNAL_PRODUCT_UPDATED)
        await push.connect()
        push.receive("user:logged-in", {"_id": "u1"})
        push.receive(PUSH_STOCK_UPDATED, "garbage")
        assert log == []
