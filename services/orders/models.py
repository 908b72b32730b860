"""SQLAlchemy ORM models for the orders service."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from services.shared.idempotency import IdempotencyKeyMixin
from services.shared.inbox import ProcessedMessageMixin
from services.shared.outbox import OutboxEventMixin


class Base(DeclarativeBase):
    """Declarative base for orders tables."""


class OrderStatus:
    PENDING_INVENTORY = "pending_inventory"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELED = "canceled"

    FINAL = frozenset({REJECTED, CANCELED})


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    cart_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    totals: Mapped[dict] = mapped_column(JSON, nullable=False)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class IdempotencyKey(IdempotencyKeyMixin, Base):
    __tablename__ = "orders_idempotency_keys"


class ProcessedMessage(ProcessedMessageMixin, Base):
    __tablename__ = "orders_processed_messages"


class OutboxEvent(OutboxEventMixin, Base):
    __tablename__ = "orders_outbox_events"
