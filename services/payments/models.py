"""SQLAlchemy ORM models for the payments service."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from services.shared.idempotency import IdempotencyKeyMixin
from services.shared.outbox import OutboxEventMixin


class Base(DeclarativeBase):
    """Declarative base for payments tables."""


class PaymentStatus:
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"

    FINAL = frozenset({CAPTURED, FAILED})


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    authorized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    captured_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class IdempotencyKey(IdempotencyKeyMixin, Base):
    __tablename__ = "payments_idempotency_keys"


class OutboxEvent(OutboxEventMixin, Base):
    __tablename__ = "payments_outbox_events"
