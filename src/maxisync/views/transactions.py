"""Transactions view: inventory movements (purchase, sale, adjustment)."""

from __future__ import annotations

from typing import Any

from maxisync.api.client import ApiRequest, ApiResponse
from maxisync.core.enums import EntityKind
from maxisync.core.errors import ValidationError
from maxisync.events.payloads import Events
from maxisync.views.base import ViewController

TRANSACTION_TYPES = ("purchase", "sale", "adjustment")


class TransactionsView(ViewController):
    view_name = "transactionsView"
    kinds = (EntityKind.TRANSACTIONS,)

    @property
    def transactions(self) -> list[dict[str, Any]]:
        return self.items[EntityKind.TRANSACTIONS]

    async def create_transaction(self, data: dict[str, Any]) -> ApiResponse:
        if data.get("type") not in TRANSACTION_TYPES:
            raise ValidationError(
                f"type must be one of {', '.join(TRANSACTION_TYPES)}",
                field="type",
                value=data.get("type"),
            )
        client = self.ctx.client
        response = await self.ctx.coordinator.execute_write(
            f"Registrar movimiento {data['type']}",
            lambda: client.create_transaction(data),
            request=ApiRequest("post", "transactions", data),
        )
        transaction = response.record("transaction")
        if transaction:
            self.ctx.bus.emit(Events.TRANSACTION_CREATED, transaction)
        return response

    def filter(
        self, type: str | None = None, product_id: str | None = None
    ) -> list[dict[str, Any]]:
        result = self.transactions
        if type is not None:
            result = [t for t in result if t.get("type") == type]
        if product_id is not None:
            result = [t for t in result if str(t.get("productId")) == product_id]
        return list(result)

    def build_rows(self) -> list[dict[str, Any]]:
        rows = [
            {
                "id": t.get("_id"),
                "type": t.get("type"),
                "product_id": t.get("productId"),
                "quantity": t.get("quantity", 0),
                "previous_stock": t.get("previousStock"),
                "new_stock": t.get("newStock"),
                "created_at": t.get("createdAt"),
            }
            for t in self.transactions
        ]
        rows.sort(key=lambda r: str(r["created_at"] or ""), reverse=True)
        return rows


__all__ = ["TransactionsView", "TRANSACTION_TYPES"]
