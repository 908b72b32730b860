"""
Order lifecycle.

    pending_inventory -> confirmed        (inventory reserved)
    pending_inventory -> rejected         (reservation failed)
    pending_inventory | confirmed -> canceled

Orders are created only from a cart snapshot whose HMAC signature
verifies. Creation, the idempotency record and the OrderPlaced outbox row
share one transaction.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Literal

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update

from services.orders.models import (
    IdempotencyKey,
    Order,
    OrderStatus,
    OutboxEvent,
    ProcessedMessage,
)
from services.orders.schemas import CartSnapshot
from services.shared import events
from services.shared.database import Database, to_iso, utcnow
from services.shared.errors import SignatureVerificationError, ValidationError
from services.shared.idempotency import claim_idempotency_key, complete_idempotency_key
from services.shared.inbox import claim_message
from services.shared.outbox import add_outbox_event
from services.shared.signing import verify_document

logger = structlog.get_logger(__name__)

CREATE_OPERATION = "orders.create"


@dataclass(frozen=True)
class CreateOrderResult:
    state: Literal["created", "replay", "in_progress"]
    response: dict[str, Any] | None = None


@dataclass(frozen=True)
class CancelResult:
    status: Literal["not_found", "already_finalized", "canceled"]
    order: dict[str, Any] | None = None


@dataclass(frozen=True)
class InventoryMarkResult:
    status: Literal["updated", "ignored"]
    order: dict[str, Any] | None = None


def serialize_order(order: Order) -> dict[str, Any]:
    return {
        "id": order.id,
        "status": order.status,
        "currency": order.currency,
        "userId": order.user_id,
        "totals": order.totals,
        "cartSnapshot": order.cart_snapshot,
        "cancellationReason": order.cancellation_reason,
        "canceledAt": to_iso(order.canceled_at),
        "createdAt": to_iso(order.created_at),
        "updatedAt": to_iso(order.updated_at),
    }


def order_amount_cents(order: dict[str, Any]) -> int:
    """Subtotal from the order totals, then from the snapshot totals, else 0."""
    for totals in (order.get("totals"), (order.get("cartSnapshot") or {}).get("totals")):
        if isinstance(totals, dict) and isinstance(totals.get("subtotalCents"), int):
            return totals["subtotalCents"]
    return 0


class OrderService:
    def __init__(self, database: Database, *, snapshot_secret: str) -> None:
        self._database = database
        self._snapshot_secret = snapshot_secret

    async def create_order(
        self,
        snapshot: dict[str, Any],
        idempotency_key: str,
        *,
        correlation_id: str | None = None,
        reservation_ttl_seconds: int | None = None,
    ) -> CreateOrderResult:
        try:
            parsed = CartSnapshot.model_validate(snapshot)
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid snapshot payload",
                details=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()],
            ) from exc

        if not verify_document(snapshot, self._snapshot_secret):
            logger.warning("snapshot_signature_rejected", snapshot_id=parsed.snapshot_id)
            raise SignatureVerificationError("Cart snapshot signature does not match")

        async with self._database.transaction() as session:
            claim = await claim_idempotency_key(
                session, IdempotencyKey, idempotency_key, CREATE_OPERATION
            )
            if claim.state == "replay":
                return CreateOrderResult("replay", claim.response)
            if claim.state == "in_progress":
                return CreateOrderResult("in_progress")

            order_id = str(uuid.uuid4())
            now = utcnow()
            totals = snapshot["totals"]
            session.add(
                Order(
                    id=order_id,
                    status=OrderStatus.PENDING_INVENTORY,
                    currency=parsed.currency,
                    user_id=parsed.user_id,
                    cart_snapshot=snapshot,
                    totals=totals,
                    created_at=now,
                    updated_at=now,
                )
            )

            payload: dict[str, Any] = {
                "orderId": order_id,
                "items": [{"sku": item.sku, "qty": item.qty} for item in parsed.items],
            }
            if reservation_ttl_seconds and reservation_ttl_seconds > 0:
                payload["ttlSeconds"] = reservation_ttl_seconds
            add_outbox_event(
                session,
                OutboxEvent,
                events.make_envelope(
                    events.ORDERS_ORDER_PLACED,
                    aggregate_id=order_id,
                    aggregate_type="order",
                    payload=payload,
                    correlation_id=correlation_id,
                ),
            )

            response = {"orderId": order_id}
            await complete_idempotency_key(
                session, IdempotencyKey, idempotency_key, CREATE_OPERATION, response
            )

        logger.info(
            "order_created",
            order_id=order_id,
            snapshot_id=parsed.snapshot_id,
            item_count=len(parsed.items),
        )
        return CreateOrderResult("created", response)

    async def get_order(self, order_id: str) -> dict[str, Any] | None:
        async with self._database.session() as session:
            order = await session.get(Order, order_id)
            return serialize_order(order) if order else None

    async def list_orders(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        async with self._database.session() as session:
            result = await session.execute(
                select(Order)
                .where(Order.user_id == user_id)
                .order_by(Order.created_at.desc())
                .limit(limit)
            )
            return [serialize_order(order) for order in result.scalars()]

    async def cancel_order(
        self,
        order_id: str,
        reason: str | None = None,
        *,
        correlation_id: str | None = None,
        causation_id: str | None = None,
    ) -> CancelResult:
        reason = reason or "customer_request"
        async with self._database.transaction() as session:
            order = await session.get(Order, order_id, with_for_update=True)
            if order is None:
                return CancelResult("not_found")
            if order.status in OrderStatus.FINAL:
                return CancelResult("already_finalized", serialize_order(order))

            now = utcnow()
            order.status = OrderStatus.CANCELED
            order.cancellation_reason = reason
            order.canceled_at = now
            order.updated_at = now
            add_outbox_event(
                session,
                OutboxEvent,
                events.make_envelope(
                    events.ORDERS_ORDER_CANCELED,
                    aggregate_id=order_id,
                    aggregate_type="order",
                    payload={"orderId": order_id, "reason": reason, "canceledAt": to_iso(now)},
                    correlation_id=correlation_id,
                    causation_id=causation_id,
                ),
            )
            serialized = serialize_order(order)

        logger.info("order_canceled", order_id=order_id, reason=reason)
        return CancelResult("canceled", serialized)

    async def mark_inventory_reserved(
        self, order_id: str, *, message_id: str, source: str
    ) -> InventoryMarkResult:
        return await self._mark_inventory(
            order_id,
            message_id=message_id,
            source=source,
            values={"status": OrderStatus.CONFIRMED},
        )

    async def mark_inventory_failed(
        self, order_id: str, reason: str, *, message_id: str, source: str
    ) -> InventoryMarkResult:
        return await self._mark_inventory(
            order_id,
            message_id=message_id,
            source=source,
            values={"status": OrderStatus.REJECTED, "cancellation_reason": f"inventory:{reason}"},
        )

    async def _mark_inventory(
        self,
        order_id: str,
        *,
        message_id: str,
        source: str,
        values: dict[str, Any],
    ) -> InventoryMarkResult:
        async with self._database.transaction() as session:
            if not await claim_message(session, ProcessedMessage, message_id, source):
                logger.info("duplicate_message_skipped", message_id=message_id, order_id=order_id)
                return InventoryMarkResult("ignored")

            result = await session.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == OrderStatus.PENDING_INVENTORY)
                .values(**values, updated_at=utcnow())
            )
            if result.rowcount != 1:
                logger.info("order_inventory_update_ignored", order_id=order_id, status=values["status"])
                return InventoryMarkResult("ignored")

            order = (
                await session.execute(
                    select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
                )
            ).scalar_one()
            serialized = serialize_order(order)

        logger.info("order_inventory_updated", order_id=order_id, status=values["status"])
        return InventoryMarkResult("updated", serialized)
