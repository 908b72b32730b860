"""Shipping quotes and idempotent shipment creation."""
from __future__ import annotations

import hashlib
from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.fulfillment.config import FulfillmentConfig
from services.fulfillment.models import Shipment
from services.shared.database import Database, insert_ignore, to_iso, utcnow
from services.shared.errors import ValidationError

logger = structlog.get_logger(__name__)

CARRIER = "ACME Logistics"
STANDARD_DELIVERY_DAYS = 5
EXPRESS_DELIVERY_DAYS = 2


def tracking_token(order_id: str) -> str:
    return hashlib.sha256(order_id.encode()).hexdigest()[:12]


def serialize_shipment(shipment: Shipment) -> dict[str, Any]:
    return {
        "shipmentId": shipment.id,
        "orderId": shipment.order_id,
        "status": shipment.status,
        "carrier": shipment.carrier,
        "trackingNumber": shipment.tracking_number,
        "trackingUrl": shipment.tracking_url,
        "shippedAt": to_iso(shipment.shipped_at),
        "deliveredAt": to_iso(shipment.delivered_at),
    }


class FulfillmentService:
    def __init__(self, database: Database, config: FulfillmentConfig) -> None:
        self._database = database
        self._config = config

    def shipping_options(
        self, country: str | None = None, postal_code: str | None = None
    ) -> dict[str, Any]:
        currency = self._config.default_currency
        return {
            "country": (country or "").strip().upper() or self._config.default_country,
            "postalCode": (postal_code or "").strip() or None,
            "options": [
                {
                    "id": "ground-standard",
                    "label": "Standard Shipping",
                    "carrier": CARRIER,
                    "serviceLevel": "standard",
                    "amount": 799,
                    "currency": currency,
                    "estimatedDeliveryDays": STANDARD_DELIVERY_DAYS,
                },
                {
                    "id": "priority-express",
                    "label": "Express Shipping",
                    "carrier": CARRIER,
                    "serviceLevel": "express",
                    "amount": 1999,
                    "currency": currency,
                    "estimatedDeliveryDays": EXPRESS_DELIVERY_DAYS,
                },
            ],
        }

    async def get_shipment(self, order_id: str) -> dict[str, Any] | None:
        async with self._database.session() as session:
            shipment = await self._find(session, order_id.strip())
            return serialize_shipment(shipment) if shipment else None

    async def create_shipment(self, order_id: str) -> tuple[dict[str, Any], bool]:
        """Returns the shipment and whether this call created it."""
        order_id = order_id.strip()
        if not order_id:
            raise ValidationError("orderId is required")

        token = tracking_token(order_id)
        tracking_number = f"TRK-{token.upper()}"
        now = utcnow()
        async with self._database.transaction() as session:
            created = await insert_ignore(
                session,
                Shipment,
                {
                    "id": f"shp_{token}",
                    "order_id": order_id,
                    "status": "fulfilled",
                    "carrier": CARRIER,
                    "tracking_number": tracking_number,
                    "tracking_url": f"https://tracking.example.com/{tracking_number}",
                    "shipped_at": now - timedelta(hours=2),
                    "delivered_at": now - timedelta(minutes=30),
                    "created_at": now,
                    "updated_at": now,
                },
                ["order_id"],
            )
            shipment = await self._find(session, order_id)
            serialized = serialize_shipment(shipment)

        if created:
            logger.info("shipment_created", order_id=order_id, shipment_id=serialized["shipmentId"])
        return serialized, created

    async def _find(self, session: AsyncSession, order_id: str) -> Shipment | None:
        result = await session.execute(select(Shipment).where(Shipment.order_id == order_id))
        return result.scalar_one_or_none()
