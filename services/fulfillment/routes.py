"""Fulfillment HTTP API."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from services.fulfillment.service import FulfillmentService
from services.shared.auth import require_internal_secret
from services.shared.errors import NotFoundError


class CreateShipmentRequest(BaseModel):
    order_id: str = Field(..., alias="orderId", min_length=1, max_length=64)


def build_router(service: FulfillmentService, internal_secret: str) -> APIRouter:
    router = APIRouter(prefix="/api/fulfillment", tags=["fulfillment"])

    @router.get("/shipping/options", summary="Shipping options for a destination")
    async def shipping_options(
        country: str | None = Query(default=None),
        postal_code: str | None = Query(default=None, alias="postalCode"),
    ) -> dict:
        return service.shipping_options(country, postal_code)

    @router.get("/shipments", summary="Shipment for an order")
    async def get_shipment(order_id: str = Query(..., alias="orderId", min_length=1)) -> dict:
        shipment = await service.get_shipment(order_id)
        if shipment is None:
            raise NotFoundError("Shipment not found", code="SHIPMENT_NOT_FOUND")
        return shipment

    @router.post(
        "/shipments",
        summary="Create the shipment for an order (service to service)",
        dependencies=[Depends(require_internal_secret(internal_secret))],
    )
    async def create_shipment(body: CreateShipmentRequest) -> JSONResponse:
        shipment, created = await service.create_shipment(body.order_id)
        return JSONResponse(content=shipment, status_code=201 if created else 200)

    return router
