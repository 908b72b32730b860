"""
Inventory reservation engine.

Every operation runs in one transaction that also holds the
processed-message claim (when a message id is given) and the outbox
row describing the change:

    reserve  -> ACTIVE rows per SKU, reserved += qty       (all or nothing)
    commit   -> ACTIVE -> COMMITTED, on_hand -= qty, reserved -= qty
    release  -> ACTIVE -> RELEASED | EXPIRED, reserved -= qty

Decrements floor at zero. Reservation failures are results carrying a
reason, not exceptions.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Literal

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.inventory.config import DEFAULT_RESERVATION_TTL_SECONDS
from services.inventory.models import (
    InventoryBalance,
    InventoryReservation,
    OutboxEvent,
    ProcessedMessage,
    ReservationStatus,
)
from services.shared import events
from services.shared.database import Database, floor_at_zero, to_iso, utcnow
from services.shared.errors import NotFoundError, ValidationError
from services.shared.inbox import claim_message, load_message_result, record_message_result
from services.shared.outbox import add_outbox_event

logger = structlog.get_logger(__name__)

REASON_INVALID_ITEMS = "INVALID_ITEMS"
REASON_INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
REASON_TTL_EXPIRED = "ttl_expired"


@dataclass(frozen=True)
class MessageContext:
    """Where a call came from: dedup id plus event correlation."""

    message_id: str | None = None
    source: str = "inventory"
    correlation_id: str | None = None
    causation_id: str | None = None


@dataclass(frozen=True)
class AdjustmentResult:
    status: Literal["applied", "duplicate"]
    summary: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "summary": self.summary}


@dataclass(frozen=True)
class ReservationResult:
    status: Literal["reserved", "failed", "already_reserved", "duplicate"]
    order_id: str
    items: list[dict[str, Any]] = field(default_factory=list)
    expires_at: str | None = None
    reason: str | None = None
    insufficient_items: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": self.status, "orderId": self.order_id}
        if self.status == "reserved":
            body["items"] = self.items
            body["expiresAt"] = self.expires_at
        elif self.status == "failed":
            body["reason"] = self.reason
            if self.insufficient_items:
                body["insufficientItems"] = self.insufficient_items
        return body


@dataclass(frozen=True)
class TransitionResult:
    status: Literal["committed", "released", "expired", "noop", "duplicate"]
    order_id: str
    items: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "orderId": self.order_id, "items": self.items}


def normalize_items(items: Iterable[Any]) -> list[dict[str, Any]]:
    """Trim SKUs, drop non-positive quantities, merge duplicate SKUs."""
    merged: dict[str, int] = {}
    for item in items:
        if isinstance(item, dict):
            sku, qty = item.get("sku"), item.get("qty")
        else:
            sku, qty = getattr(item, "sku", None), getattr(item, "qty", None)
        if not isinstance(sku, str) or not sku.strip():
            continue
        if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
            continue
        sku = sku.strip()
        merged[sku] = merged.get(sku, 0) + qty
    return [{"sku": sku, "qty": qty} for sku, qty in merged.items()]


def balance_summary(balance: InventoryBalance) -> dict[str, Any]:
    return {
        "sku": balance.sku,
        "onHand": balance.on_hand,
        "reserved": balance.reserved,
        "available": balance.on_hand - balance.reserved,
        "updatedAt": to_iso(balance.updated_at),
    }


class InventoryService:
    def __init__(
        self,
        database: Database,
        *,
        default_ttl_seconds: int = DEFAULT_RESERVATION_TTL_SECONDS,
    ) -> None:
        self._database = database
        self._default_ttl_seconds = default_ttl_seconds

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_summary(self, sku: str) -> dict[str, Any]:
        async with self._database.session() as session:
            balance = await session.get(InventoryBalance, sku.strip())
            if balance is None:
                raise NotFoundError(f"SKU {sku} not found", code="SKU_NOT_FOUND")
            return balance_summary(balance)

    async def list_reservations(self, order_id: str) -> list[dict[str, Any]]:
        async with self._database.session() as session:
            result = await session.execute(
                select(InventoryReservation)
                .where(InventoryReservation.reservation_id == order_id)
                .order_by(InventoryReservation.sku)
            )
            return [
                {
                    "sku": row.sku,
                    "qty": row.qty,
                    "status": row.status,
                    "expiresAt": to_iso(row.expires_at),
                }
                for row in result.scalars()
            ]

    async def load_result(self, message_id: str) -> dict[str, Any] | None:
        async with self._database.session() as session:
            return await load_message_result(session, ProcessedMessage, message_id)

    # ------------------------------------------------------------------
    # Stock adjustments
    # ------------------------------------------------------------------

    async def adjust_stock(
        self,
        sku: str,
        delta: int,
        reason: str,
        reference_id: str | None = None,
        context: MessageContext = MessageContext(source="inventory.adjust"),
    ) -> AdjustmentResult:
        sku = sku.strip()
        if not sku:
            raise ValidationError("SKU is required")

        async with self._database.transaction() as session:
            if not await self._claim(session, context):
                return AdjustmentResult("duplicate")

            now = utcnow()
            balance = await session.get(InventoryBalance, sku, with_for_update=True)
            on_hand = balance.on_hand if balance else 0
            reserved = balance.reserved if balance else 0
            next_on_hand = on_hand + delta
            if next_on_hand < 0 or next_on_hand < reserved:
                raise ValidationError(
                    f"Adjustment would lead to negative available stock for SKU {sku}",
                    code="INVALID_ADJUSTMENT",
                    details={"sku": sku, "onHand": on_hand, "reserved": reserved, "delta": delta},
                )

            if balance is None:
                balance = InventoryBalance(
                    sku=sku, on_hand=next_on_hand, reserved=0, created_at=now, updated_at=now
                )
                session.add(balance)
            else:
                balance.on_hand = next_on_hand
                balance.updated_at = now

            self._emit(
                session,
                events.INVENTORY_STOCK_ADJUSTMENT_APPLIED,
                aggregate_id=sku,
                aggregate_type="sku",
                payload={
                    "sku": sku,
                    "delta": delta,
                    "onHand": next_on_hand,
                    "reserved": reserved,
                    "available": next_on_hand - reserved,
                    "reason": reason,
                    "referenceId": reference_id,
                },
                context=context,
            )
            await session.flush()
            result = AdjustmentResult("applied", balance_summary(balance))
            await self._record(session, context, result.to_dict())

        logger.info("stock_adjusted", sku=sku, delta=delta, on_hand=next_on_hand, reason=reason)
        return result

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    async def reserve(
        self,
        order_id: str,
        items: Iterable[Any],
        ttl_seconds: int | None = None,
        context: MessageContext = MessageContext(source="inventory.reserve"),
    ) -> ReservationResult:
        normalized = normalize_items(items)
        ttl = ttl_seconds if ttl_seconds and ttl_seconds > 0 else self._default_ttl_seconds

        async with self._database.transaction() as session:
            if not await self._claim(session, context):
                return ReservationResult("duplicate", order_id)

            if not normalized:
                result = ReservationResult("failed", order_id, reason=REASON_INVALID_ITEMS)
                self._emit_reservation_failed(session, result, context)
                await self._record(session, context, result.to_dict())
                logger.info("reservation_failed", order_id=order_id, reason=REASON_INVALID_ITEMS)
                return result

            existing = await session.execute(
                select(InventoryReservation.sku)
                .where(InventoryReservation.reservation_id == order_id)
                .limit(1)
            )
            if existing.first() is not None:
                logger.info("reservation_already_exists", order_id=order_id)
                result = ReservationResult("already_reserved", order_id)
                await self._record(session, context, result.to_dict())
                return result

            skus = sorted(item["sku"] for item in normalized)
            rows = await session.execute(
                select(InventoryBalance)
                .where(InventoryBalance.sku.in_(skus))
                .order_by(InventoryBalance.sku)
                .with_for_update()
            )
            balances = {balance.sku: balance for balance in rows.scalars()}

            insufficient = []
            for item in normalized:
                balance = balances.get(item["sku"])
                available = max(balance.on_hand - balance.reserved, 0) if balance else 0
                if item["qty"] > available:
                    insufficient.append(
                        {"sku": item["sku"], "qty": item["qty"], "available": available}
                    )

            if insufficient:
                result = ReservationResult(
                    "failed",
                    order_id,
                    reason=REASON_INSUFFICIENT_STOCK,
                    insufficient_items=insufficient,
                )
                self._emit_reservation_failed(session, result, context)
                await self._record(session, context, result.to_dict())
                logger.info(
                    "reservation_failed",
                    order_id=order_id,
                    reason=REASON_INSUFFICIENT_STOCK,
                    insufficient=insufficient,
                )
                return result

            now = utcnow()
            expires_at = now + timedelta(seconds=ttl)
            for item in normalized:
                session.add(
                    InventoryReservation(
                        reservation_id=order_id,
                        sku=item["sku"],
                        qty=item["qty"],
                        status=ReservationStatus.ACTIVE,
                        expires_at=expires_at,
                        created_at=now,
                        updated_at=now,
                    )
                )
                balance = balances[item["sku"]]
                balance.reserved = balance.reserved + item["qty"]
                balance.updated_at = now

            result = ReservationResult(
                "reserved", order_id, items=normalized, expires_at=to_iso(expires_at)
            )
            self._emit(
                session,
                events.INVENTORY_STOCK_RESERVED,
                aggregate_id=order_id,
                aggregate_type="reservation",
                payload={"orderId": order_id, "items": normalized, "expiresAt": result.expires_at},
                context=context,
            )
            await session.flush()
            await self._record(session, context, result.to_dict())

        logger.info("stock_reserved", order_id=order_id, items=normalized, ttl_seconds=ttl)
        return result

    async def commit(
        self,
        order_id: str,
        context: MessageContext = MessageContext(source="inventory.commit"),
    ) -> TransitionResult:
        async with self._database.transaction() as session:
            if not await self._claim(session, context):
                return TransitionResult("duplicate", order_id)

            lines = await self._active_lines(session, order_id)
            if not lines:
                result = TransitionResult("noop", order_id)
                await self._record(session, context, result.to_dict())
                return result

            now = utcnow()
            for line in lines:
                await session.execute(
                    update(InventoryBalance)
                    .where(InventoryBalance.sku == line["sku"])
                    .values(
                        on_hand=floor_at_zero(InventoryBalance.on_hand, line["qty"]),
                        reserved=floor_at_zero(InventoryBalance.reserved, line["qty"]),
                        updated_at=now,
                    )
                )
            await self._transition(session, order_id, ReservationStatus.COMMITTED)

            self._emit(
                session,
                events.INVENTORY_STOCK_COMMITTED,
                aggregate_id=order_id,
                aggregate_type="reservation",
                payload={"orderId": order_id, "items": lines},
                context=context,
            )
            result = TransitionResult("committed", order_id, lines)
            await self._record(session, context, result.to_dict())

        logger.info("reservation_committed", order_id=order_id, items=lines)
        return result

    async def release(
        self,
        order_id: str,
        reason: str,
        mode: Literal["release", "expire"] = "release",
        context: MessageContext = MessageContext(source="inventory.release"),
    ) -> TransitionResult:
        async with self._database.transaction() as session:
            if not await self._claim(session, context):
                return TransitionResult("duplicate", order_id)

            lines = await self._active_lines(session, order_id)
            if not lines:
                result = TransitionResult("noop", order_id)
                await self._record(session, context, result.to_dict())
                return result

            now = utcnow()
            for line in lines:
                await session.execute(
                    update(InventoryBalance)
                    .where(InventoryBalance.sku == line["sku"])
                    .values(
                        reserved=floor_at_zero(InventoryBalance.reserved, line["qty"]),
                        updated_at=now,
                    )
                )

            expired = mode == "expire"
            await self._transition(
                session,
                order_id,
                ReservationStatus.EXPIRED if expired else ReservationStatus.RELEASED,
            )

            items = [{"sku": line["sku"], "qty": line["qty"]} for line in lines]
            if expired:
                self._emit(
                    session,
                    events.INVENTORY_STOCK_RESERVATION_EXPIRED,
                    aggregate_id=order_id,
                    aggregate_type="reservation",
                    payload={
                        "orderId": order_id,
                        "items": items,
                        "expiresAt": lines[0]["expiresAt"],
                    },
                    context=context,
                )
            else:
                self._emit(
                    session,
                    events.INVENTORY_STOCK_RESERVATION_RELEASED,
                    aggregate_id=order_id,
                    aggregate_type="reservation",
                    payload={"orderId": order_id, "reason": reason, "items": items},
                    context=context,
                )
            result = TransitionResult("expired" if expired else "released", order_id, items)
            await self._record(session, context, result.to_dict())

        logger.info("reservation_released", order_id=order_id, reason=reason, mode=mode)
        return result

    async def expire_sweep(self, batch_size: int = 50) -> int:
        """Release ACTIVE reservations whose TTL has passed; returns how many."""
        async with self._database.session() as session:
            result = await session.execute(
                select(InventoryReservation.reservation_id)
                .where(
                    InventoryReservation.status == ReservationStatus.ACTIVE,
                    InventoryReservation.expires_at.is_not(None),
                    InventoryReservation.expires_at < utcnow(),
                )
                .order_by(InventoryReservation.expires_at)
                .limit(batch_size)
            )
            order_ids = list(dict.fromkeys(result.scalars()))

        expired = 0
        for order_id in order_ids:
            outcome = await self.release(
                order_id,
                REASON_TTL_EXPIRED,
                mode="expire",
                context=MessageContext(source="inventory.expirer"),
            )
            if outcome.status == "expired":
                expired += 1
        return expired

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _claim(self, session: AsyncSession, context: MessageContext) -> bool:
        if not context.message_id:
            return True
        claimed = await claim_message(session, ProcessedMessage, context.message_id, context.source)
        if not claimed:
            logger.info("duplicate_message_skipped", message_id=context.message_id, source=context.source)
        return claimed

    async def _record(self, session: AsyncSession, context: MessageContext, result: dict[str, Any]) -> None:
        if context.message_id:
            await record_message_result(session, ProcessedMessage, context.message_id, result)

    async def _active_lines(self, session: AsyncSession, order_id: str) -> list[dict[str, Any]]:
        result = await session.execute(
            select(InventoryReservation)
            .where(
                InventoryReservation.reservation_id == order_id,
                InventoryReservation.status == ReservationStatus.ACTIVE,
            )
            .order_by(InventoryReservation.sku)
            .with_for_update()
        )
        return [
            {"sku": row.sku, "qty": row.qty, "expiresAt": to_iso(row.expires_at)}
            for row in result.scalars()
        ]

    async def _transition(self, session: AsyncSession, order_id: str, status: str) -> None:
        await session.execute(
            update(InventoryReservation)
            .where(
                InventoryReservation.reservation_id == order_id,
                InventoryReservation.status == ReservationStatus.ACTIVE,
            )
            .values(status=status, updated_at=utcnow())
        )

    def _emit_reservation_failed(
        self, session: AsyncSession, result: ReservationResult, context: MessageContext
    ) -> None:
        payload: dict[str, Any] = {"orderId": result.order_id, "reason": result.reason}
        if result.insufficient_items:
            payload["insufficientItems"] = result.insufficient_items
        self._emit(
            session,
            events.INVENTORY_STOCK_RESERVATION_FAILED,
            aggregate_id=result.order_id,
            aggregate_type="reservation",
            payload=payload,
            context=context,
        )

    def _emit(
        self,
        session: AsyncSession,
        event_type: str,
        *,
        aggregate_id: str,
        aggregate_type: str,
        payload: dict[str, Any],
        context: MessageContext,
    ) -> None:
        envelope = events.make_envelope(
            event_type,
            aggregate_id=aggregate_id,
            aggregate_type=aggregate_type,
            payload=payload,
            correlation_id=context.correlation_id,
            causation_id=context.causation_id,
        )
        add_outbox_event(session, OutboxEvent, envelope)
