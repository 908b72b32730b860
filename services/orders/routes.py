"""Orders HTTP API."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from services.orders.schemas import CancelOrderRequest, PlaceOrderRequest
from services.orders.service import OrderService
from services.shared.auth import Authenticator, Claims
from services.shared.errors import (
    AlreadyProcessingError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from services.shared.http_idempotency import REPLAY_HEADER
from services.shared.middleware import correlation_id

ADMIN_ROLE = "admin"


def build_router(service: OrderService, auth: Authenticator) -> APIRouter:
    router = APIRouter(prefix="/api/orders", tags=["orders"])

    @router.post("", summary="Place an order from a signed cart snapshot")
    async def place_order(
        body: PlaceOrderRequest,
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
        request_id: str | None = Depends(correlation_id),
    ) -> JSONResponse:
        key = (idempotency_key or "").strip()
        if not key:
            raise BadRequestError("Idempotency-Key header is required", code="IDEMPOTENCY_KEY_REQUIRED")

        result = await service.create_order(
            body.cart_snapshot,
            key,
            correlation_id=request_id,
            reservation_ttl_seconds=body.reservation_ttl_seconds,
        )
        if result.state == "in_progress":
            raise AlreadyProcessingError(key)

        replay = result.state == "replay"
        response = JSONResponse(content=result.response, status_code=200 if replay else 201)
        response.headers[REPLAY_HEADER] = "true" if replay else "false"
        return response

    @router.get("", summary="List the caller's orders")
    async def list_orders(claims: Claims = Depends(auth.required)) -> dict:
        return {"items": await service.list_orders(claims.user_id)}

    @router.get("/{order_id}", summary="Get an order")
    async def get_order(order_id: str, claims: Claims = Depends(auth.required)) -> dict:
        order = await service.get_order(order_id)
        if order is None:
            raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
        if order["userId"] and order["userId"] != claims.user_id and not claims.has_role(ADMIN_ROLE):
            raise ForbiddenError("Order belongs to another user")
        return order

    @router.post("/{order_id}/cancel", summary="Cancel an order")
    async def cancel_order(
        order_id: str,
        body: CancelOrderRequest | None = None,
        claims: Claims = Depends(auth.required),
        request_id: str | None = Depends(correlation_id),
    ) -> dict:
        existing = await service.get_order(order_id)
        if existing is None:
            raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
        if existing["userId"] and existing["userId"] != claims.user_id and not claims.has_role(ADMIN_ROLE):
            raise ForbiddenError("Order belongs to another user")

        result = await service.cancel_order(
            order_id, body.reason if body else None, correlation_id=request_id
        )
        if result.status == "not_found":
            raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
        if result.status == "already_finalized":
            raise ConflictError(
                "Order already finalized", code="ORDER_FINALIZED", details={"order": result.order}
            )
        return {"status": "canceled", "order": result.order}

    return router
