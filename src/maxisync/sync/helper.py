"""View-side helpers for announcing product and stock changes."""

from __future__ import annotations

from typing import Any

from maxisync.api.client import ApiClient, ApiResponse
from maxisync.core.logging import get_logger
from maxisync.events.bus import EventBus
from maxisync.events.payloads import Events, StockUpdate

logger = get_logger(__name__)


class SyncHelper:
    """Emits the events other views listen to after a local change."""

    def __init__(self, bus: EventBus, client: ApiClient) -> None:
        self.bus = bus
        self.client = client

    def notify_product_updated(self, product: dict[str, Any], source_view: str = "unknown") -> bool:
        if not isinstance(product, dict) or not product.get("_id"):
            logger.error("sync_helper_invalid_product", source_view=source_view)
            return False
        logger.debug("product_update_announced", product_id=product["_id"], source_view=source_view)
        return self.bus.emit(Events.PRODUCT_UPDATED, product)

    def notify_stock_updated(
        self,
        product_id: str,
        old_stock: int | None,
        new_stock: int,
        product: dict[str, Any] | None = None,
        source_view: str = "unknown",
    ) -> bool:
        logger.debug(
            "stock_update_announced",
            product_id=product_id,
            old_stock=old_stock,
            new_stock=new_stock,
            source_view=source_view,
        )
        return self.bus.emit(
            Events.PRODUCT_STOCK_UPDATED,
            StockUpdate(
                product_id=product_id,
                new_stock=new_stock,
                old_stock=old_stock,
                product=product,
                source_view=source_view,
            ),
        )

    def notify_product_sold(
        self,
        product_id: str,
        quantity: int,
        new_stock: int,
        product: dict[str, Any] | None = None,
        source_view: str = "unknown",
    ) -> bool:
        sold = self.bus.emit(
            Events.EXTERNAL_PRODUCT_SOLD,
            StockUpdate(
                product_id=product_id,
                new_stock=new_stock,
                old_stock=new_stock + quantity,
                product=product,
                quantity_sold=quantity,
                source_view=source_view,
            ),
        )
        updated = self.notify_stock_updated(
            product_id, new_stock + quantity, new_stock, product, source_view
        )
        return sold and updated

    async def update_product_stock_from_sale(
        self, product_id: str, quantity: int, source_view: str = "sales"
    ) -> ApiResponse:
        """Deduct ``quantity`` from a product's stock on the backend and announce it.

        Stock never goes below zero; ``stock_surtido`` is sent back unchanged.
        """
        current = await self.client.get_product(product_id)
        if not current.success:
            return current
        product = current.record("product") or {}
        old_stock = product.get("stock") or 0
        new_stock = max(0, old_stock - quantity)

        response = await self.client.update_product_stock(
            product_id,
            {"stock": new_stock, "stock_surtido": product.get("stock_surtido") or 0},
        )
        if not response.success:
            logger.error(
                "stock_update_failed",
                product_id=product_id,
                message=response.message,
                status=response.status,
            )
            return response

        updated = response.record("product") or {**product, "stock": new_stock}
        self.notify_product_sold(product_id, quantity, new_stock, updated, source_view)
        return ApiResponse.ok(updated, status=response.status)


__all__ = ["SyncHelper"]
