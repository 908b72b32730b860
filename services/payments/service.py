"""
Payment state machine: authorized -> captured | failed.

Authorization is idempotent through the (key, "payments.authorize")
record; every transition writes its event to the payments outbox in the
same transaction.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Literal

import structlog
from sqlalchemy import select

from services.payments.models import IdempotencyKey, OutboxEvent, Payment, PaymentStatus
from services.shared import events
from services.shared.database import Database, to_iso, utcnow
from services.shared.errors import AlreadyProcessingError, ConflictError, NotFoundError
from services.shared.idempotency import claim_idempotency_key, complete_idempotency_key
from services.shared.outbox import add_outbox_event

logger = structlog.get_logger(__name__)

AUTHORIZE_OPERATION = "payments.authorize"


@dataclass(frozen=True)
class AuthorizeResult:
    state: Literal["created", "replay", "in_progress"]
    response: dict[str, Any] | None = None


@dataclass(frozen=True)
class PaymentTransition:
    status: Literal["captured", "failed", "not_found", "already_finalized"]
    payment: dict[str, Any] | None = None


def serialize_payment(payment: Payment) -> dict[str, Any]:
    return {
        "id": payment.id,
        "orderId": payment.order_id,
        "status": payment.status,
        "amountCents": payment.amount_cents,
        "currency": payment.currency,
        "failureReason": payment.failure_reason,
        "authorizedAt": to_iso(payment.authorized_at),
        "capturedAt": to_iso(payment.captured_at),
        "failedAt": to_iso(payment.failed_at),
        "createdAt": to_iso(payment.created_at),
    }


class PaymentService:
    def __init__(self, database: Database) -> None:
        self._database = database

    async def authorize_payment(
        self,
        order_id: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        *,
        correlation_id: str | None = None,
    ) -> AuthorizeResult:
        currency = currency.upper()
        async with self._database.transaction() as session:
            claim = await claim_idempotency_key(
                session, IdempotencyKey, idempotency_key, AUTHORIZE_OPERATION
            )
            if claim.state == "replay":
                return AuthorizeResult("replay", claim.response)
            if claim.state == "in_progress":
                return AuthorizeResult("in_progress")

            payment_id = str(uuid.uuid4())
            now = utcnow()
            session.add(
                Payment(
                    id=payment_id,
                    order_id=order_id,
                    status=PaymentStatus.AUTHORIZED,
                    amount_cents=amount_cents,
                    currency=currency,
                    authorized_at=now,
                    created_at=now,
                    updated_at=now,
                )
            )
            add_outbox_event(
                session,
                OutboxEvent,
                events.make_envelope(
                    events.PAYMENTS_PAYMENT_AUTHORIZED,
                    aggregate_id=payment_id,
                    aggregate_type="payment",
                    payload={
                        "paymentId": payment_id,
                        "orderId": order_id,
                        "amountCents": amount_cents,
                        "currency": currency,
                    },
                    correlation_id=correlation_id,
                ),
            )
            response = {"paymentId": payment_id}
            await complete_idempotency_key(
                session, IdempotencyKey, idempotency_key, AUTHORIZE_OPERATION, response
            )

        logger.info("payment_authorized", payment_id=payment_id, order_id=order_id, amount_cents=amount_cents)
        return AuthorizeResult("created", response)

    async def capture_payment(
        self, payment_id: str, *, correlation_id: str | None = None
    ) -> PaymentTransition:
        async with self._database.transaction() as session:
            payment = await session.get(Payment, payment_id, with_for_update=True)
            if payment is None:
                return PaymentTransition("not_found")
            if payment.status != PaymentStatus.AUTHORIZED:
                return PaymentTransition("already_finalized", serialize_payment(payment))

            now = utcnow()
            payment.status = PaymentStatus.CAPTURED
            payment.captured_at = now
            payment.updated_at = now
            add_outbox_event(
                session,
                OutboxEvent,
                events.make_envelope(
                    events.PAYMENTS_PAYMENT_CAPTURED,
                    aggregate_id=payment_id,
                    aggregate_type="payment",
                    payload={
                        "paymentId": payment_id,
                        "orderId": payment.order_id,
                        "capturedAt": to_iso(now),
                    },
                    correlation_id=correlation_id,
                ),
            )
            serialized = serialize_payment(payment)

        logger.info("payment_captured", payment_id=payment_id)
        return PaymentTransition("captured", serialized)

    async def fail_payment(
        self, payment_id: str, reason: str, *, correlation_id: str | None = None
    ) -> PaymentTransition:
        async with self._database.transaction() as session:
            payment = await session.get(Payment, payment_id, with_for_update=True)
            if payment is None:
                return PaymentTransition("not_found")
            if payment.status in PaymentStatus.FINAL:
                return PaymentTransition("already_finalized", serialize_payment(payment))

            now = utcnow()
            payment.status = PaymentStatus.FAILED
            payment.failure_reason = reason
            payment.failed_at = now
            payment.updated_at = now
            add_outbox_event(
                session,
                OutboxEvent,
                events.make_envelope(
                    events.PAYMENTS_PAYMENT_FAILED,
                    aggregate_id=payment_id,
                    aggregate_type="payment",
                    payload={
                        "paymentId": payment_id,
                        "orderId": payment.order_id,
                        "reason": reason,
                        "failedAt": to_iso(now),
                    },
                    correlation_id=correlation_id,
                ),
            )
            serialized = serialize_payment(payment)

        logger.info("payment_failed", payment_id=payment_id, reason=reason)
        return PaymentTransition("failed", serialized)

    async def get_payment(self, payment_id: str) -> dict[str, Any] | None:
        async with self._database.session() as session:
            payment = await session.get(Payment, payment_id)
            return serialize_payment(payment) if payment else None

    async def list_payments(self, order_id: str | None = None) -> list[dict[str, Any]]:
        async with self._database.session() as session:
            stmt = select(Payment).order_by(Payment.created_at)
            if order_id:
                stmt = stmt.where(Payment.order_id == order_id)
            result = await session.execute(stmt)
            return [serialize_payment(payment) for payment in result.scalars()]

    async def authorize_and_capture(
        self,
        order_id: str,
        amount_cents: int,
        currency: str,
        *,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        """Saga step: one authorization per order, captured once."""
        key = f"order:{order_id}"
        result = await self.authorize_payment(
            order_id, amount_cents, currency, key, correlation_id=correlation_id
        )
        if result.state == "in_progress":
            raise AlreadyProcessingError(key)

        payment_id = result.response["paymentId"]
        captured = await self.capture_payment(payment_id, correlation_id=correlation_id)
        if captured.status == "not_found":
            raise NotFoundError("Payment not found", code="PAYMENT_NOT_FOUND")
        payment = captured.payment
        if payment["status"] != PaymentStatus.CAPTURED:
            raise ConflictError(
                "Payment can no longer be captured",
                code="PAYMENT_FINALIZED",
                details={"payment": payment},
            )
        return payment
