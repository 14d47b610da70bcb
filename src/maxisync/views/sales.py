"""Sales view: sales list and lens stock deduction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from maxisync.api.client import ApiRequest, ApiResponse
from maxisync.core.enums import EntityKind
from maxisync.core.errors import ValidationError
from maxisync.core.logging import get_logger
from maxisync.events.payloads import Events
from maxisync.views.base import ViewController

logger = get_logger(__name__)


@dataclass(frozen=True)
class StockDeduction:
    stock: int
    stock_surtido: int


def compute_stock_deduction(
    product: dict[str, Any], quantity: int, *, warehouse_mode: bool = False
) -> StockDeduction:
    """New ``stock``/``stock_surtido`` after taking ``quantity`` units out.

    Normal mode takes from the display stock (``stock_surtido``) first and
    covers the remainder from the warehouse (``stock_almacenado``).
    Warehouse mode only lowers the total stock.

    Raises:
        ValidationError: If the quantity is not positive or stock is insufficient.
    """
    if quantity <= 0:
        raise ValidationError("Quantity must be positive", field="quantity", value=quantity)

    name = product.get("name") or product.get("_id") or "producto"
    stock = product.get("stock") or 0
    surtido = product.get("stock_surtido") or 0

    if stock < quantity:
        raise ValidationError(
            f"Stock insuficiente para {name}. Disponible: {stock}, Solicitado: {quantity}",
            field="stock",
            value=stock,
        )

    if warehouse_mode:
        return StockDeduction(stock=stock - quantity, stock_surtido=surtido)

    if surtido >= quantity:
        return StockDeduction(stock=stock - quantity, stock_surtido=surtido - quantity)

    almacenado = product.get("stock_almacenado") or 0
    if almacenado < quantity - surtido:
        raise ValidationError(
            f"Stock insuficiente para {name}. Total disponible: {stock}, Solicitado: {quantity}",
            field="stock_almacenado",
            value=almacenado,
        )
    return StockDeduction(stock=stock - quantity, stock_surtido=0)


class SalesView(ViewController):
    view_name = "salesView"
    kinds = (EntityKind.SALES, EntityKind.PRODUCTS)

    @property
    def sales(self) -> list[dict[str, Any]]:
        return self.items[EntityKind.SALES]

    async def create_sale(self, data: dict[str, Any]) -> ApiResponse:
        client = self.ctx.client
        response = await self.ctx.coordinator.execute_write(
            "Registrar venta",
            lambda: client.create_sale(data),
            request=ApiRequest("post", "sales", data),
        )
        sale = response.record("sale")
        if sale:
            self.ctx.bus.emit(Events.SALE_CREATED, sale)
        return response

    async def sell_lens(
        self, product_id: str, quantity: int, *, warehouse_mode: bool = False
    ) -> ApiResponse:
        """Take ``quantity`` lenses out of stock and announce the sale.

        Raises:
            ValidationError: If the product does not have enough stock.
        """
        current = await self.ctx.client.get_product(product_id)
        if not current.success:
            return current
        product = current.record("product") or {}
        deduction = compute_stock_deduction(product, quantity, warehouse_mode=warehouse_mode)

        payload = {"stock": deduction.stock, "stock_surtido": deduction.stock_surtido}
        client = self.ctx.client
        response = await self.ctx.coordinator.execute_write(
            f"Salida de {quantity} x {product.get('name', product_id)}",
            lambda: client.update_product_stock(product_id, payload),
            request=ApiRequest("patch", f"products/{product_id}/stock", payload),
        )
        if not response.success:
            return response

        updated = response.record("product") or {**product, **payload}
        self.ctx.helper.notify_product_sold(
            product_id, quantity, deduction.stock, updated, self.view_name
        )
        logger.info(
            "lens_sold",
            product_id=product_id,
            quantity=quantity,
            new_stock=deduction.stock,
            warehouse_mode=warehouse_mode,
        )
        return ApiResponse.ok(updated, status=response.status)

    def build_rows(self) -> list[dict[str, Any]]:
        return [
            {
                "id": s.get("_id"),
                "customer": s.get("customer", ""),
                "total": s.get("total", 0),
                "items": len(s.get("items", []) or []),
                "created_at": s.get("createdAt"),
            }
            for s in self.sales
        ]


__all__ = ["SalesView", "StockDeduction", "compute_stock_deduction"]
