"""Downstream ports used by checkout: catalog pricing and order placement."""
from __future__ import annotations

from typing import Any, Protocol

import structlog

from services.cart.models import CartItem
from services.shared.errors import DownstreamError
from services.shared.http_client import ServiceClient

logger = structlog.get_logger(__name__)


class PricingProvider(Protocol):
    async def quote(self, items: list[CartItem], currency: str | None = None) -> list[dict[str, Any]]: ...


class OrdersClient(Protocol):
    async def place_order(self, snapshot: dict[str, Any]) -> str: ...


class CatalogPricingClient:
    def __init__(self, client: ServiceClient) -> None:
        self._client = client

    async def quote(self, items: list[CartItem], currency: str | None = None) -> list[dict[str, Any]]:
        body: dict[str, Any] = {
            "items": [
                item.model_dump(by_alias=True, exclude_none=True) for item in items
            ]
        }
        if currency:
            body["currency"] = currency
        payload = await self._client.post("/api/catalog/pricing/quote", json=body)
        if not isinstance(payload, dict) or not isinstance(payload.get("items"), list):
            raise DownstreamError(self._client.endpoint.name, "pricing response has no items")
        return payload["items"]

    async def aclose(self) -> None:
        await self._client.aclose()


class HttpOrdersClient:
    """Forwards a signed snapshot; the snapshot id is the idempotency key."""

    def __init__(self, client: ServiceClient) -> None:
        self._client = client

    async def place_order(self, snapshot: dict[str, Any]) -> str:
        payload = await self._client.post(
            "/api/orders",
            json={"cartSnapshot": snapshot},
            headers={"idempotency-key": snapshot["snapshotId"]},
        )
        order_id = payload.get("orderId") if isinstance(payload, dict) else None
        if not order_id:
            raise DownstreamError(self._client.endpoint.name, "response missing orderId")
        return str(order_id)

    async def aclose(self) -> None:
        await self._client.aclose()
