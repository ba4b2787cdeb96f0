"""Read-only reporting over cart records."""

from typing import Any, Mapping

from cart_recovery_service.infrastructure.database.models import CartStatus
from cart_recovery_service.repositories.cart_repository import CartRepository
from shared.constants import DISPLAY_STATUS_ORDER_CREATED


def display_status(record: Mapping[str, Any]) -> str:
    """
    Label shown for a cart.

    A cart with an order that is not recovered shows as order_created. This
    is a view projection only and is never written back.
    """
    status = record.get("status") or ""
    if record.get("order_id") and status != CartStatus.RECOVERED:
        return DISPLAY_STATUS_ORDER_CREATED
    return status


def summarize_items(record: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Named cart lines with quantity and line total."""
    lines = []
    for item in record.get("cart_items") or []:
        name = str(item.get("name") or "").strip()
        if not name:
            continue
        quantity = abs(int(item.get("quantity") or 1))
        price = float(item.get("price") or 0)
        lines.append({"name": name, "quantity": quantity, "line_total": round(price * quantity, 2)})
    return lines


class ReportingService:
    """Aggregates and recent-cart listings for the dashboard."""

    def __init__(self, repository: CartRepository):
        self.repository = repository

    async def list_recent(self, limit: int) -> list[dict[str, Any]]:
        rows = await self.repository.list_recent(limit)
        return [
            {
                **row,
                "display_status": display_status(row),
                "items": summarize_items(row),
            }
            for row in rows
        ]

    async def stats(self) -> dict[str, Any]:
        stats = await self.repository.stats()
        abandoned = stats["abandoned_count"]
        recovered = stats["recovered_count"]
        rate = round(recovered / (abandoned + recovered) * 100, 2) if abandoned + recovered else 0.0
        return {**stats, "recovery_rate": rate}
