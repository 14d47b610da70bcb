"""Tests for maxisync.views — controllers wired to a full SyncContext."""

import pytest
import pytest_asyncio
import structlog

from maxisync.api.client import ApiResponse
from maxisync.cache.subscriptions import Notification
from maxisync.core.enums import EntityKind
from maxisync.core.errors import ValidationError
from maxisync.events.payloads import Events
from maxisync.views import ProductsView, SalesView, TransactionsView
from maxisync.views.sales import StockDeduction, compute_stock_deduction

LENS = {
    "_id": "p1",
    "name": "LenteX",
    "sphere": "-1.00",
    "barcode": "7501",
    "stock": 10,
    "stock_surtido": 4,
    "stock_almacenado": 6,
}


@pytest_asyncio.fixture
async def online(ctx, backend):
    backend.add("products", LENS)
    backend.add("products", {"_id": "p2", "name": "Armazon", "barcode": "7502", "stock": 1})
    await ctx.start()
    return ctx


@pytest_asyncio.fixture
async def products_view(online):
    view = ProductsView(online)
    await view.mount()
    return view


@pytest_asyncio.fixture
async def sales_view(online):
    view = SalesView(online)
    await view.mount()
    return view


# ── Stock deduction ──────────────────────────────────────────────


class TestComputeStockDeduction:
    def test_takes_from_display_stock_first(self):
        assert compute_stock_deduction(LENS, 3) == StockDeduction(stock=7, stock_surtido=1)

    def test_covers_remainder_from_warehouse(self):
        assert compute_stock_deduction(LENS, 6) == StockDeduction(stock=4, stock_surtido=0)

    def test_warehouse_mode_only_lowers_total(self):
        assert compute_stock_deduction(LENS, 6, warehouse_mode=True) == StockDeduction(
            stock=4, stock_surtido=4
        )

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_quantity_must_be_positive(self, quantity):
        with pytest.raises(ValidationError):
            compute_stock_deduction(LENS, quantity)

    def test_insufficient_total(self):
        with pytest.raises(ValidationError) as exc:
            compute_stock_deduction(LENS, 11)
        assert exc.value.field == "stock"
        assert "Stock insuficiente para LenteX" in exc.value.message

    def test_insufficient_warehouse(self):
        product = {"_id": "p9", "stock": 10, "stock_surtido": 2, "stock_almacenado": 1}
        with pytest.raises(ValidationError) as exc:
            compute_stock_deduction(product, 5)
        assert exc.value.field == "stock_almacenado"


# ── Base controller ──────────────────────────────────────────────


class TestViewController:
    @pytest.mark.asyncio
    async def test_mount_loads_and_renders(self, products_view):
        assert products_view.mounted
        assert products_view.render_count == 1
        assert [row["name"] for row in products_view.rows] == ["Armazon", "LenteX"]

    @pytest.mark.asyncio
    async def test_unmount_stops_notifications(self, products_view, online):
        products_view.unmount()
        online.bus.emit(Events.PRODUCT_CREATED, {"_id": "p3", "name": "Nuevo"})
        assert products_view.get("p3") is None
        assert not online.cache.is_subscribed("productsView", EntityKind.PRODUCTS)

    @pytest.mark.asyncio
    async def test_invalidation_marks_reload(self, products_view, online):
        online.cache.invalidate_cache(EntityKind.PRODUCTS)
        assert products_view.needs_reload
        await products_view.load()
        assert not products_view.needs_reload
        assert len(products_view.products) == 2

    @pytest.mark.asyncio
    async def test_unknown_action_ignored(self, products_view):
        before = list(products_view.products)
        products_view.on_notification(
            Notification(action="mystery", data=None, data_type=EntityKind.PRODUCTS)
        )
        assert products_view.products == before

    @pytest.mark.asyncio
    async def test_load_binds_view_name_to_log_context(self, products_view, online):
        seen = []

        async def fetch():
            seen.append(structlog.contextvars.get_contextvars().get("view"))
            return ApiResponse.ok([LENS])

        online.cache.set_fetcher(EntityKind.PRODUCTS, fetch)
        online.cache.invalidate_cache(EntityKind.PRODUCTS, notify=False)
        await products_view.load()
        assert seen == ["productsView"]
        assert "view" not in structlog.contextvars.get_contextvars()


# ── Products ─────────────────────────────────────────────────────


class TestProductsView:
    @pytest.mark.asyncio
    async def test_create_reaches_every_view(self, products_view, sales_view, backend):
        response = await products_view.create_product({"name": "LenteZ", "stock": 3})
        assert response.success
        new_id = response.data["_id"]
        assert new_id in backend.collections["products"]
        assert products_view.get(new_id)["name"] == "LenteZ"
        assert any(p["_id"] == new_id for p in sales_view.items[EntityKind.PRODUCTS])

    @pytest.mark.asyncio
    async def test_update_product(self, products_view, online):
        response = await products_view.update_product("p2", {"name": "Armazon Pro"})
        assert response.success
        assert products_view.get("p2")["name"] == "Armazon Pro"
        assert online.cache.get_record(EntityKind.PRODUCTS, "p2")["name"] == "Armazon Pro"

    @pytest.mark.asyncio
    async def test_update_stock_propagates(self, products_view, sales_view):
        response = await products_view.update_stock("p1", 5, stock_surtido=2)
        assert response.success
        assert products_view.get("p1")["stock"] == 5
        lens = next(p for p in sales_view.items[EntityKind.PRODUCTS] if p["_id"] == "p1")
        assert lens["stock"] == 5
        assert sales_view.notifications[-1].action == "stock-updated"

    @pytest.mark.asyncio
    async def test_delete_product(self, products_view, online, backend):
        response = await products_view.delete_product("p2")
        assert response.success
        assert "p2" not in backend.collections["products"]
        assert products_view.get("p2") is None
        assert online.cache.get_record(EntityKind.PRODUCTS, "p2") is None

    @pytest.mark.asyncio
    async def test_find_by_barcode(self, products_view, backend):
        assert (await products_view.find_by_barcode("7501"))["_id"] == "p1"
        backend.add("products", {"_id": "p7", "barcode": "9999"})
        assert (await products_view.find_by_barcode("9999"))["_id"] == "p7"
        assert await products_view.find_by_barcode("0000") is None

    @pytest.mark.asyncio
    async def test_search(self, products_view):
        assert [p["_id"] for p in products_view.search("lente")] == ["p1"]
        assert [p["_id"] for p in products_view.search("7502")] == ["p2"]
        assert len(products_view.search("  ")) == 2

    @pytest.mark.asyncio
    async def test_write_while_offline_is_queued(self, ctx, backend):
        view = ProductsView(ctx)
        await view.mount()
        response = await view.create_product({"name": "Offline"})
        assert response.queued
        assert backend.collections["products"] == {}
        report = await ctx.push.connect()
        assert report.all_succeeded
        assert [p["name"] for p in backend.collections["products"].values()] == ["Offline"]


# ── Sales ────────────────────────────────────────────────────────


class TestSalesView:
    @pytest.mark.asyncio
    async def test_sell_lens_updates_backend_and_views(self, sales_view, products_view, backend):
        response = await sales_view.sell_lens("p1", 2)
        assert response.success
        stored = backend.collections["products"]["p1"]
        assert (stored["stock"], stored["stock_surtido"]) == (8, 2)
        assert products_view.get("p1")["stock"] == 8

    @pytest.mark.asyncio
    async def test_sell_lens_emits_product_sold(self, sales_view, online):
        sold = []
        online.bus.on(Events.EXTERNAL_PRODUCT_SOLD, sold.append)
        await sales_view.sell_lens("p1", 1, warehouse_mode=True)
        assert sold[0].quantity_sold == 1
        assert sold[0].source_view == "salesView"

    @pytest.mark.asyncio
    async def test_sell_lens_insufficient_stock(self, sales_view, backend):
        with pytest.raises(ValidationError):
            await sales_view.sell_lens("p2", 5)
        assert backend.collections["products"]["p2"]["stock"] == 1

    @pytest.mark.asyncio
    async def test_sell_unknown_lens(self, sales_view):
        response = await sales_view.sell_lens("missing", 1)
        assert response.status == 404

    @pytest.mark.asyncio
    async def test_create_sale(self, sales_view):
        response = await sales_view.create_sale({"customer": "Ana", "total": 250, "items": [1]})
        assert response.success
        assert sales_view.rows[0]["customer"] == "Ana"
        assert sales_view.rows[0]["items"] == 1


# ── Transactions ─────────────────────────────────────────────────


class TestTransactionsView:
    @pytest_asyncio.fixture
    async def view(self, online):
        view = TransactionsView(online)
        await view.mount()
        return view

    @pytest.mark.asyncio
    async def test_rejects_unknown_type(self, view):
        with pytest.raises(ValidationError):
            await view.create_transaction({"type": "gift", "productId": "p1"})

    @pytest.mark.asyncio
    async def test_create_filter_and_order(self, view):
        await view.create_transaction(
            {"type": "purchase", "productId": "p1", "quantity": 5, "createdAt": "2024-01-01"}
        )
        await view.create_transaction(
            {"type": "sale", "productId": "p2", "quantity": 1, "createdAt": "2024-02-01"}
        )
        assert [t["productId"] for t in view.filter(type="sale")] == ["p2"]
        assert [t["type"] for t in view.filter(product_id="p1")] == ["purchase"]
        assert [row["type"] for row in view.rows] == ["sale", "purchase"]
