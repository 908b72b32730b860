"""SQLAlchemy ORM models for the inventory service."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from services.shared.inbox import ProcessedMessageMixin
from services.shared.outbox import OutboxEventMixin


class Base(DeclarativeBase):
    """Declarative base for inventory tables."""


class ReservationStatus:
    ACTIVE = "ACTIVE"
    COMMITTED = "COMMITTED"
    RELEASED = "RELEASED"
    EXPIRED = "EXPIRED"


class InventoryBalance(Base):
    """On-hand and reserved units per SKU; available is derived."""

    __tablename__ = "inventory_balance"
    __table_args__ = (
        CheckConstraint("on_hand >= 0", name="ck_inventory_balance_on_hand"),
        CheckConstraint("reserved >= 0", name="ck_inventory_balance_reserved"),
    )

    sku: Mapped[str] = mapped_column(String(128), primary_key=True)
    on_hand: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    @property
    def available(self) -> int:
        return self.on_hand - self.reserved


class InventoryReservation(Base):
    """One line of an order's reservation. Immutable once not ACTIVE."""

    __tablename__ = "inventory_reservations"

    reservation_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    sku: Mapped[str] = mapped_column(String(128), primary_key=True)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ReservationStatus.ACTIVE, index=True
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class ProcessedMessage(ProcessedMessageMixin, Base):
    __tablename__ = "inventory_processed_messages"


class OutboxEvent(OutboxEventMixin, Base):
    __tablename__ = "inventory_outbox_events"
