"""Products view: catalogue of lenses with stock."""

from __future__ import annotations

from typing import Any

from maxisync.api.client import ApiRequest, ApiResponse
from maxisync.cache.records import record_id
from maxisync.core.enums import EntityKind
from maxisync.core.logging import get_logger
from maxisync.events.payloads import Events
from maxisync.views.base import ViewController

logger = get_logger(__name__)


class ProductsView(ViewController):
    view_name = "productsView"
    kinds = (EntityKind.PRODUCTS,)

    @property
    def products(self) -> list[dict[str, Any]]:
        return self.items[EntityKind.PRODUCTS]

    def get(self, product_id: str) -> dict[str, Any] | None:
        for product in self.products:
            if record_id(product) == product_id:
                return product
        return None

    async def create_product(self, data: dict[str, Any]) -> ApiResponse:
        client = self.ctx.client
        response = await self.ctx.coordinator.execute_write(
            f"Crear producto {data.get('name', '')}".strip(),
            lambda: client.create_product(data),
            request=ApiRequest("post", "products", data),
        )
        product = response.record("product")
        if product:
            self.ctx.bus.emit(Events.PRODUCT_CREATED, product)
        return response

    async def update_product(self, product_id: str, data: dict[str, Any]) -> ApiResponse:
        client = self.ctx.client
        response = await self.ctx.coordinator.execute_write(
            f"Actualizar producto {product_id}",
            lambda: client.update_product(product_id, data),
            request=ApiRequest("put", f"products/{product_id}", data),
        )
        product = response.record("product")
        if product:
            self.ctx.bus.emit(Events.PRODUCT_UPDATED, product)
        return response

    async def update_stock(
        self, product_id: str, stock: int, stock_surtido: int | None = None
    ) -> ApiResponse:
        payload: dict[str, Any] = {"stock": stock}
        if stock_surtido is not None:
            payload["stock_surtido"] = stock_surtido
        previous = self.get(product_id) or {}

        client = self.ctx.client
        response = await self.ctx.coordinator.execute_write(
            f"Actualizar stock {product_id} -> {stock}",
            lambda: client.update_product_stock(product_id, payload),
            request=ApiRequest("patch", f"products/{product_id}/stock", payload),
        )
        if response.success:
            self.ctx.helper.notify_stock_updated(
                product_id,
                previous.get("stock"),
                stock,
                response.record("product"),
                self.view_name,
            )
        return response

    async def delete_product(self, product_id: str) -> ApiResponse:
        client = self.ctx.client
        response = await self.ctx.coordinator.execute_write(
            f"Eliminar producto {product_id}",
            lambda: client.delete_product(product_id),
            request=ApiRequest("delete", f"products/{product_id}"),
        )
        if response.success:
            self.ctx.bus.emit(Events.PRODUCT_DELETED, product_id)
        return response

    async def find_by_barcode(self, barcode: str) -> dict[str, Any] | None:
        for product in self.products:
            if product.get("barcode") == barcode:
                return product
        response = await self.ctx.client.get_product_by_barcode(barcode)
        if not response.success:
            logger.info("barcode_not_found", barcode=barcode, status=response.status)
            return None
        return response.record("product")

    def search(self, text: str) -> list[dict[str, Any]]:
        needle = text.strip().lower()
        if not needle:
            return list(self.products)
        return [
            p for p in self.products
            if any(needle in str(p.get(key, "")).lower() for key in ("name", "barcode", "_id"))
        ]

    def build_rows(self) -> list[dict[str, Any]]:
        return [
            {
                "id": p.get("_id"),
                "name": p.get("name", ""),
                "sphere": p.get("sphere", "N"),
                "cylinder": p.get("cylinder", "-"),
                "addition": p.get("addition", "-"),
                "barcode": p.get("barcode", ""),
                "stock": p.get("stock", 0),
            }
            for p in sorted(self.products, key=lambda p: str(p.get("name", "")))
        ]


__all__ = ["ProductsView"]
