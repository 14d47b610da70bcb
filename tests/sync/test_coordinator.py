"""Tests for maxisync.sync.coordinator — SyncCoordinator."""

import pytest

from maxisync.api.client import ApiRequest, ApiResponse
from maxisync.core.enums import EntityKind
from maxisync.core.errors import InvalidArgumentError
from maxisync.events.bus import EventBus
from maxisync.events.payloads import Events, StockUpdate
from maxisync.offline.queue import OfflineQueue
from maxisync.sync.coordinator import (
    FORCE_REFRESH,
    PRODUCT_UPDATED,
    STOCK_UPDATED,
    SyncCoordinator,
)
from maxisync.sync.push import PushChannel


@pytest.fixture
def notices():
    return []


@pytest.fixture
def coordinator(bus, cache, notices):
    cache.bind_events()
    coordinator = SyncCoordinator(bus, cache, notifier=lambda msg, level: notices.append(msg))
    coordinator.bind_events()
    return coordinator


@pytest.fixture
def feed(coordinator):
    events = []
    coordinator.subscribe("barcodeView", lambda event_type, data: events.append((event_type, data)))
    return events


def seed(cache, *records):
    for record in records:
        cache.update_cache(EntityKind.PRODUCTS, "created", record)


# ── Generic subscribers ──────────────────────────────────────────


class TestSubscribers:
    def test_validates_arguments(self, coordinator):
        with pytest.raises(InvalidArgumentError):
            coordinator.subscribe("", print)
        with pytest.raises(InvalidArgumentError):
            coordinator.subscribe("v", None)

    def test_unsubscribe(self, coordinator):
        events = []
        off = coordinator.subscribe("v", lambda t, d: events.append(t))
        assert off() is True
        assert off() is False
        coordinator.broadcast_product_update({"_id": "p1"})
        assert events == []

    def test_failing_subscriber_isolated(self, coordinator, feed):
        def broken(event_type, data):
            raise RuntimeError("gone")

        coordinator.subscribe("brokenView", broken)
        coordinator.broadcast_product_update({"_id": "p1"})
        assert [t for t, _ in feed] == [PRODUCT_UPDATED]
        assert coordinator.stats()["errors"] == 1
        assert coordinator.stats()["subscriber_names"] == ["barcodeView", "brokenView"]


# ── Local changes ────────────────────────────────────────────────


class TestLocalUpdates:
    def test_product_update_upserts_and_confirms(self, coordinator, cache, bus, feed):
        synced = []
        bus.on(Events.PRODUCT_SYNCED, synced.append)
        seed(cache, {"_id": "p1", "stock": 10})
        assert coordinator.broadcast_product_update({"_id": "p1", "stock": 9})
        assert cache.get_record(EntityKind.PRODUCTS, "p1") == {"_id": "p1", "stock": 9}
        assert feed == [(PRODUCT_UPDATED, {"_id": "p1", "stock": 9})]
        assert [s.product_id for s in synced] == ["p1"]

    def test_product_update_without_id_rejected(self, coordinator, feed):
        assert coordinator.broadcast_product_update({"name": "sin id"}) is False
        assert feed == []

    def test_domain_event_reaches_coordinator(self, coordinator, cache, bus, feed):
        received = []
        cache.subscribe("productsView", EntityKind.PRODUCTS, received.append)
        bus.emit(Events.PRODUCT_UPDATED, {"_id": "p1", "stock": 3})
        assert cache.get_record(EntityKind.PRODUCTS, "p1") == {"_id": "p1", "stock": 3}
        assert [n.action for n in received] == ["updated"]
        assert feed == [(PRODUCT_UPDATED, {"_id": "p1", "stock": 3})]

    def test_stock_update_with_full_product(self, coordinator, cache, feed):
        received = []
        cache.subscribe("salesView", EntityKind.PRODUCTS, received.append)
        seed(cache, {"_id": "p1", "stock": 10, "name": "LenteX"})
        update = StockUpdate(
            product_id="p1",
            new_stock=8,
            old_stock=10,
            product={"_id": "p1", "stock": 8, "name": "LenteX"},
        )
        assert coordinator.broadcast_stock_update(update)
        assert cache.get_record(EntityKind.PRODUCTS, "p1")["stock"] == 8
        assert [(n.action, n.data, n.source) for n in received] == [
            ("stock-updated", update, "sync-coordinator")
        ]
        assert feed == [(STOCK_UPDATED, update)]

    def test_stock_update_patches_when_only_stock_known(self, coordinator, cache):
        seed(cache, {"_id": "p1", "stock": 10, "name": "LenteX"})
        coordinator.broadcast_stock_update({"productId": "p1", "newStock": 4})
        assert cache.get_record(EntityKind.PRODUCTS, "p1") == {
            "_id": "p1",
            "stock": 4,
            "name": "LenteX",
        }

    def test_stock_update_without_product_id(self, coordinator, feed):
        assert coordinator.broadcast_stock_update({"newStock": 4}) is False
        assert feed == []

    def test_batch_update(self, coordinator, cache, bus):
        emitted = coordinator.handle_batch_update(
            [
                {"type": "product", "data": {"_id": "p1", "stock": 1}},
                {"type": "sale", "data": {"_id": "s1"}},
                {"type": "product", "data": {"_id": "p2", "stock": 2}},
            ]
        )
        assert emitted == 2
        assert [r["_id"] for r in cache.peek(EntityKind.PRODUCTS)] == ["p1", "p2"]

    def test_batch_must_be_list(self, coordinator):
        assert coordinator.handle_batch_update({"type": "product"}) == 0


# ── Pushed changes ───────────────────────────────────────────────


class TestExternalUpdates:
    def test_external_product_update(self, coordinator, cache, bus, feed, notices):
        received = []
        cache.subscribe("productsView", EntityKind.PRODUCTS, received.append)
        bus.emit(Events.EXTERNAL_PRODUCT_UPDATED, {"_id": "p1", "name": "LenteX", "stock": 2})
        assert cache.get_record(EntityKind.PRODUCTS, "p1")["stock"] == 2
        assert [(n.action, n.source) for n in received] == [("updated", "push")]
        assert feed[0][0] == PRODUCT_UPDATED
        assert notices == ["Producto actualizado: LenteX"]

    def test_external_stock_update(self, coordinator, cache, bus, notices):
        received = []
        cache.subscribe("productsView", EntityKind.PRODUCTS, received.append)
        seed(cache, {"_id": "p1", "stock": 10, "name": "LenteX"})
        bus.emit(
            Events.EXTERNAL_STOCK_UPDATED,
            StockUpdate(product_id="p1", new_stock=7, source_view="push"),
        )
        assert cache.get_record(EntityKind.PRODUCTS, "p1")["stock"] == 7
        assert [(n.action, n.source) for n in received] == [("stock-updated", "push")]
        assert notices == ["Stock actualizado: p1"]

    def test_invalid_external_payload(self, coordinator, notices):
        assert coordinator.handle_external_update("p1") is False
        assert coordinator.handle_external_stock_update({"newStock": 1}) is False
        assert notices == []

    def test_unbind(self, coordinator, bus, feed):
        coordinator.unbind_events()
        bus.emit(Events.EXTERNAL_PRODUCT_UPDATED, {"_id": "p1"})
        assert feed == []


# ── Global sync ──────────────────────────────────────────────────


class TestForceGlobalSync:
    @pytest.mark.asyncio
    async def test_success(self, coordinator, fetchers, bus, feed):
        fetchers[EntityKind.PRODUCTS].records = [{"_id": "p1"}]
        changed = []
        bus.on(Events.PRODUCTS_CHANGED, changed.append)
        assert await coordinator.force_global_sync() is True
        assert changed == [[{"_id": "p1"}]]
        assert feed == [(FORCE_REFRESH, [{"_id": "p1"}])]

    @pytest.mark.asyncio
    async def test_failure(self, coordinator, fetchers, feed):
        fetchers[EntityKind.PRODUCTS].fail = True
        assert await coordinator.force_global_sync() is False
        assert feed == []


# ── Writes ───────────────────────────────────────────────────────


class TestExecuteWrite:
    @pytest.fixture
    def queue(self, bus):
        return OfflineQueue(bus, replay_delay=0)

    @pytest.fixture
    def push(self, bus, queue):
        return PushChannel(bus, queue)

    @pytest.fixture
    def writer(self, bus, cache, queue, push):
        return SyncCoordinator(bus, cache, queue=queue, push=push)

    @pytest.mark.asyncio
    async def test_online_write_runs_action(self, writer, push, queue):
        await push.connect()

        async def action():
            return ApiResponse.ok({"_id": "s1"}, status=201)

        response = await writer.execute_write("Crear venta", action)
        assert response.success
        assert response.data == {"_id": "s1"}
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_plain_result_wrapped(self, writer, push):
        await push.connect()
        response = await writer.execute_write("noop", lambda: {"ok": 1})
        assert response.success
        assert response.data == {"ok": 1}

    @pytest.mark.asyncio
    async def test_offline_write_is_queued_without_running(self, writer, queue):
        calls = []
        response = await writer.execute_write(
            "Crear venta",
            lambda: calls.append(1),
            request=ApiRequest("post", "sales", {"total": 1}),
        )
        assert response.queued
        assert calls == []
        assert queue.pending()[0].description == "Crear venta"

    @pytest.mark.asyncio
    async def test_connection_failure_defers_and_disconnects(self, writer, push, queue, bus):
        await push.connect()
        lost = []
        bus.on(Events.CONNECTION_LOST, lost.append)

        async def action():
            return ApiResponse.failure("connection refused")

        response = await writer.execute_write("Crear venta", action)
        assert response.queued
        assert len(queue) == 1
        assert not push.is_connected
        assert lost == [None]

    @pytest.mark.asyncio
    async def test_http_error_returned_not_queued(self, writer, push, queue):
        await push.connect()

        async def action():
            return ApiResponse.failure("Stock insuficiente", status=400)

        response = await writer.execute_write("Crear venta", action)
        assert not response.success
        assert not response.queued
        assert response.status == 400
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_rejected_request_returned_not_queued(self, writer, push, queue):
        await push.connect()

        async def action():
            return ApiResponse.failure("Request body could not be encoded", rejected=True)

        response = await writer.execute_write("Crear venta", action)
        assert not response.success
        assert not response.queued
        assert len(queue) == 0
        assert push.is_connected

    @pytest.mark.asyncio
    async def test_without_queue_runs_directly(self, cache):
        coordinator = SyncCoordinator(EventBus(), cache)
        response = await coordinator.execute_write("x", lambda: ApiResponse.failure("down"))
        assert response.is_connection_error
