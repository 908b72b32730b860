"""Payments HTTP API."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse

from services.payments.schemas import (
    AuthorizeAndCaptureRequest,
    AuthorizePaymentRequest,
    FailPaymentRequest,
)
from services.payments.service import PaymentService, PaymentTransition
from services.shared.auth import Authenticator, require_internal_secret
from services.shared.errors import (
    AlreadyProcessingError,
    BadRequestError,
    ConflictError,
    NotFoundError,
)
from services.shared.http_idempotency import REPLAY_HEADER
from services.shared.middleware import correlation_id


def _transition_body(result: PaymentTransition) -> dict[str, Any]:
    if result.status == "not_found":
        raise NotFoundError("Payment not found", code="PAYMENT_NOT_FOUND")
    if result.status == "already_finalized":
        raise ConflictError(
            "Payment already finalized",
            code="PAYMENT_FINALIZED",
            details={"payment": result.payment},
        )
    return {"status": result.status, "payment": result.payment}


def build_router(service: PaymentService, auth: Authenticator, internal_secret: str) -> APIRouter:
    router = APIRouter(prefix="/api/payments", tags=["payments"])
    authenticated = [Depends(auth.required)]

    @router.post("/authorize", summary="Authorize a payment", dependencies=authenticated)
    async def authorize(
        body: AuthorizePaymentRequest,
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
        request_id: str | None = Depends(correlation_id),
    ) -> JSONResponse:
        key = (idempotency_key or "").strip()
        if not key:
            raise BadRequestError("Idempotency-Key header is required", code="IDEMPOTENCY_KEY_REQUIRED")

        result = await service.authorize_payment(
            body.order_id, body.amount_cents, body.currency, key, correlation_id=request_id
        )
        if result.state == "in_progress":
            raise AlreadyProcessingError(key)
        replay = result.state == "replay"
        response = JSONResponse(content=result.response, status_code=200 if replay else 201)
        response.headers[REPLAY_HEADER] = "true" if replay else "false"
        return response

    @router.post(
        "/{payment_id}/capture",
        summary="Capture an authorized payment",
        dependencies=authenticated,
    )
    async def capture(
        payment_id: str, request_id: str | None = Depends(correlation_id)
    ) -> dict:
        return _transition_body(
            await service.capture_payment(payment_id, correlation_id=request_id)
        )

    @router.post("/{payment_id}/fail", summary="Mark a payment failed", dependencies=authenticated)
    async def fail(
        payment_id: str,
        body: FailPaymentRequest | None = None,
        request_id: str | None = Depends(correlation_id),
    ) -> dict:
        reason = body.reason if body else "declined"
        return _transition_body(
            await service.fail_payment(payment_id, reason, correlation_id=request_id)
        )

    @router.get("", summary="List payments", dependencies=authenticated)
    async def list_payments(order_id: str | None = Query(default=None, alias="orderId")) -> dict:
        return {"items": await service.list_payments(order_id)}

    @router.get("/{payment_id}", summary="Get a payment", dependencies=authenticated)
    async def get_payment(payment_id: str) -> dict:
        payment = await service.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("Payment not found", code="PAYMENT_NOT_FOUND")
        return payment

    @router.post(
        "/internal/authorize-and-capture",
        summary="Authorize and capture an order's payment (service to service)",
        dependencies=[Depends(require_internal_secret(internal_secret))],
    )
    async def authorize_and_capture(body: AuthorizeAndCaptureRequest) -> dict:
        payment = await service.authorize_and_capture(
            body.order_id,
            body.amount_cents,
            body.currency,
            correlation_id=body.correlation_id,
        )
        return {"payment": payment}

    return router
