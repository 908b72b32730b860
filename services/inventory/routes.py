"""
Inventory HTTP API.

Mutations require an Idempotency-Key. The key becomes the
processed-message id ``http:<key>`` and the stored result is replayed
for repeated keys with ``x-idempotent-replay: true``.
"""
from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from services.inventory.schemas import AdjustmentRequest, ReleaseRequest, ReserveRequest
from services.inventory.service import InventoryService, MessageContext
from services.shared.errors import AlreadyProcessingError, BadRequestError
from services.shared.http_idempotency import REPLAY_HEADER
from services.shared.middleware import correlation_id

logger = structlog.get_logger(__name__)


def _message_id(key: str | None) -> str:
    if not key or not key.strip():
        raise BadRequestError("Idempotency-Key header is required", code="IDEMPOTENCY_KEY_REQUIRED")
    return f"http:{key.strip()}"


def _reservation_status_code(body: dict[str, Any]) -> int:
    return 201 if body.get("status") == "reserved" else 409


def _respond(body: dict[str, Any], status_code: int, *, replay: bool) -> JSONResponse:
    response = JSONResponse(content=body, status_code=status_code)
    response.headers[REPLAY_HEADER] = "true" if replay else "false"
    return response


def build_router(service: InventoryService) -> APIRouter:
    router = APIRouter(prefix="/api/inventory", tags=["inventory"])

    async def _replay(message_id: str, key: str) -> dict[str, Any]:
        stored = await service.load_result(message_id)
        if stored is None:
            raise AlreadyProcessingError(key)
        return stored

    @router.get("/{sku}", summary="Stock summary for a SKU")
    async def get_stock(sku: str) -> dict:
        return await service.get_summary(sku)

    @router.get("/reservations/{order_id}", summary="Reservation lines for an order")
    async def get_reservation(order_id: str) -> dict:
        return {"orderId": order_id, "items": await service.list_reservations(order_id)}

    @router.post("/adjustments", summary="Apply a stock adjustment")
    async def adjust(
        body: AdjustmentRequest,
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
        request_id: str | None = Depends(correlation_id),
    ) -> JSONResponse:
        message_id = _message_id(idempotency_key)
        result = await service.adjust_stock(
            body.sku,
            body.delta,
            body.reason,
            body.reference_id,
            MessageContext(message_id=message_id, source="http.adjust", correlation_id=request_id),
        )
        if result.status == "duplicate":
            return _respond(await _replay(message_id, idempotency_key), 200, replay=True)
        return _respond(result.to_dict(), 200, replay=False)

    @router.post("/reservations", summary="Reserve stock for an order")
    async def reserve(
        body: ReserveRequest,
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
        request_id: str | None = Depends(correlation_id),
    ) -> JSONResponse:
        message_id = _message_id(idempotency_key)
        result = await service.reserve(
            body.order_id,
            [item.model_dump() for item in body.items],
            body.ttl_seconds,
            MessageContext(message_id=message_id, source="http.reserve", correlation_id=request_id),
        )
        if result.status == "duplicate":
            stored = await _replay(message_id, idempotency_key)
            return _respond(stored, _reservation_status_code(stored), replay=True)
        payload = result.to_dict()
        return _respond(payload, _reservation_status_code(payload), replay=False)

    @router.post("/reservations/{order_id}/commit", summary="Commit an order's reservation")
    async def commit(
        order_id: str,
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
        request_id: str | None = Depends(correlation_id),
    ) -> JSONResponse:
        message_id = _message_id(idempotency_key)
        result = await service.commit(
            order_id,
            MessageContext(message_id=message_id, source="http.commit", correlation_id=request_id),
        )
        if result.status == "duplicate":
            return _respond(await _replay(message_id, idempotency_key), 200, replay=True)
        return _respond(result.to_dict(), 200, replay=False)

    @router.post("/reservations/{order_id}/release", summary="Release an order's reservation")
    async def release(
        order_id: str,
        body: ReleaseRequest | None = None,
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
        request_id: str | None = Depends(correlation_id),
    ) -> JSONResponse:
        message_id = _message_id(idempotency_key)
        reason = body.reason if body else "manual_release"
        result = await service.release(
            order_id,
            reason,
            context=MessageContext(
                message_id=message_id, source="http.release", correlation_id=request_id
            ),
        )
        if result.status == "duplicate":
            return _respond(await _replay(message_id, idempotency_key), 200, replay=True)
        return _respond(result.to_dict(), 200, replay=False)

    return router
