"""
Domain event envelope and the typed event union.

Every event travels as the same JSON envelope. Consumers validate the
envelope against a union discriminated by ``type``; types outside the
union are rejected so the broker can dead-letter them.
"""
from __future__ import annotations

import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from services.shared.database import to_iso, utcnow
from services.shared.errors import UnknownEventTypeError

EVENT_VERSION = 1

CATALOG_PRODUCT_CREATED = "catalog.product.created.v1"
CATALOG_PRODUCT_UPDATED = "catalog.product.updated.v1"
INVENTORY_STOCK_RESERVED = "inventory.stock.reserved.v1"
INVENTORY_STOCK_RESERVATION_FAILED = "inventory.stock.reservation_failed.v1"
INVENTORY_STOCK_RESERVATION_RELEASED = "inventory.stock.reservation_released.v1"
INVENTORY_STOCK_RESERVATION_EXPIRED = "inventory.stock.reservation_expired.v1"
INVENTORY_STOCK_COMMITTED = "inventory.stock.committed.v1"
INVENTORY_STOCK_ADJUSTMENT_APPLIED = "inventory.stock.adjustment_applied.v1"
ORDERS_ORDER_PLACED = "orders.order_placed.v1"
ORDERS_ORDER_CANCELED = "orders.order_canceled.v1"
PAYMENTS_PAYMENT_AUTHORIZED = "payments.payment_authorized.v1"
PAYMENTS_PAYMENT_CAPTURED = "payments.payment_captured.v1"
PAYMENTS_PAYMENT_FAILED = "payments.payment_failed.v1"


def build_routing_key(event_type: str) -> str:
    """Event types are already dot-namespaced; bare names go under ``domain.``."""
    return event_type if "." in event_type else f"domain.{event_type}"


class Aggregate(BaseModel):
    id: str
    type: str
    version: int | None = None


class EventEnvelope(BaseModel):
    """Wire form of a domain event."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: str
    occurred_at: str = Field(alias="occurredAt")
    aggregate: Aggregate
    correlation_id: str | None = Field(default=None, alias="correlationId")
    causation_id: str | None = Field(default=None, alias="causationId")
    payload: Any = Field(default_factory=dict)

    @property
    def aggregate_id(self) -> str:
        return self.aggregate.id

    @property
    def aggregate_type(self) -> str:
        return self.aggregate.type

    def to_wire(self) -> dict[str, Any]:
        body = self.model_dump(by_alias=True, exclude_none=True, mode="json")
        if isinstance(self.payload, BaseModel):
            body["payload"] = self.payload.model_dump(by_alias=True, exclude_none=True, mode="json")
        return body


def make_envelope(
    event_type: str,
    *,
    aggregate_id: str,
    aggregate_type: str,
    payload: dict[str, Any],
    correlation_id: str | None = None,
    causation_id: str | None = None,
) -> EventEnvelope:
    return EventEnvelope(
        id=str(uuid.uuid4()),
        type=event_type,
        occurred_at=to_iso(utcnow()),
        aggregate=Aggregate(id=aggregate_id, type=aggregate_type, version=EVENT_VERSION),
        correlation_id=correlation_id,
        causation_id=causation_id,
        payload=payload,
    )


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class LineItem(_Payload):
    sku: str
    qty: int


class ShortfallItem(_Payload):
    sku: str
    qty: int
    available: int


class OrderPlacedPayload(_Payload):
    order_id: str
    items: list[dict[str, Any]] = Field(default_factory=list)
    ttl_seconds: int | None = None


class OrderCanceledPayload(_Payload):
    order_id: str
    reason: str | None = None
    canceled_at: str | None = None


class PaymentAuthorizedPayload(_Payload):
    payment_id: str
    order_id: str
    amount_cents: int
    currency: str


class PaymentCapturedPayload(_Payload):
    payment_id: str
    order_id: str
    captured_at: str | None = None


class PaymentFailedPayload(_Payload):
    payment_id: str
    order_id: str
    reason: str | None = None
    failed_at: str | None = None


class StockReservedPayload(_Payload):
    order_id: str
    items: list[LineItem]
    expires_at: str | None = None


class StockReservationFailedPayload(_Payload):
    order_id: str
    reason: str
    insufficient_items: list[ShortfallItem] | None = None


class StockReleasedPayload(_Payload):
    order_id: str
    reason: str | None = None
    items: list[LineItem] = Field(default_factory=list)


class StockExpiredPayload(_Payload):
    order_id: str
    items: list[LineItem] = Field(default_factory=list)
    expires_at: str | None = None


class StockCommittedPayload(_Payload):
    order_id: str
    items: list[LineItem] = Field(default_factory=list)


class StockAdjustmentPayload(_Payload):
    sku: str
    delta: int
    reason: str
    on_hand: int
    reserved: int
    reference_id: str | None = None


class ProductCreatedPayload(_Payload):
    product: dict[str, Any]
    variants: list[dict[str, Any]] = Field(default_factory=list)
    prices: list[dict[str, Any]] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    media: list[dict[str, Any]] = Field(default_factory=list)


class ProductUpdatedPayload(_Payload):
    product_id: str
    updated_fields: list[str] = Field(default_factory=list)
    updated_at: str | None = None


# ---------------------------------------------------------------------------
# Tagged union
# ---------------------------------------------------------------------------


class OrderPlaced(EventEnvelope):
    type: Literal["orders.order_placed.v1"]
    payload: OrderPlacedPayload


class OrderCanceled(EventEnvelope):
    type: Literal["orders.order_canceled.v1"]
    payload: OrderCanceledPayload


class PaymentAuthorized(EventEnvelope):
    type: Literal["payments.payment_authorized.v1"]
    payload: PaymentAuthorizedPayload


class PaymentCaptured(EventEnvelope):
    type: Literal["payments.payment_captured.v1"]
    payload: PaymentCapturedPayload


class PaymentFailed(EventEnvelope):
    type: Literal["payments.payment_failed.v1"]
    payload: PaymentFailedPayload


class StockReserved(EventEnvelope):
    type: Literal["inventory.stock.reserved.v1"]
    payload: StockReservedPayload


class StockReservationFailed(EventEnvelope):
    type: Literal["inventory.stock.reservation_failed.v1"]
    payload: StockReservationFailedPayload


class StockReservationReleased(EventEnvelope):
    type: Literal["inventory.stock.reservation_released.v1"]
    payload: StockReleasedPayload


class StockReservationExpired(EventEnvelope):
    type: Literal["inventory.stock.reservation_expired.v1"]
    payload: StockExpiredPayload


class StockCommitted(EventEnvelope):
    type: Literal["inventory.stock.committed.v1"]
    payload: StockCommittedPayload


class StockAdjustmentApplied(EventEnvelope):
    type: Literal["inventory.stock.adjustment_applied.v1"]
    payload: StockAdjustmentPayload


class ProductCreated(EventEnvelope):
    type: Literal["catalog.product.created.v1"]
    payload: ProductCreatedPayload


class ProductUpdated(EventEnvelope):
    type: Literal["catalog.product.updated.v1"]
    payload: ProductUpdatedPayload


DomainEvent = Annotated[
    Union[
        OrderPlaced,
        OrderCanceled,
        PaymentAuthorized,
        PaymentCaptured,
        PaymentFailed,
        StockReserved,
        StockReservationFailed,
        StockReservationReleased,
        StockReservationExpired,
        StockCommitted,
        StockAdjustmentApplied,
        ProductCreated,
        ProductUpdated,
    ],
    Field(discriminator="type"),
]

_domain_event_adapter: TypeAdapter[DomainEvent] = TypeAdapter(DomainEvent)

KNOWN_EVENT_TYPES = frozenset(
    {
        CATALOG_PRODUCT_CREATED,
        CATALOG_PRODUCT_UPDATED,
        INVENTORY_STOCK_RESERVED,
        INVENTORY_STOCK_RESERVATION_FAILED,
        INVENTORY_STOCK_RESERVATION_RELEASED,
        INVENTORY_STOCK_RESERVATION_EXPIRED,
        INVENTORY_STOCK_COMMITTED,
        INVENTORY_STOCK_ADJUSTMENT_APPLIED,
        ORDERS_ORDER_PLACED,
        ORDERS_ORDER_CANCELED,
        PAYMENTS_PAYMENT_AUTHORIZED,
        PAYMENTS_PAYMENT_CAPTURED,
        PAYMENTS_PAYMENT_FAILED,
    }
)


def parse_event(data: Any) -> DomainEvent:
    """Validate a decoded message body; unknown types raise UnknownEventTypeError."""
    event_type = data.get("type") if isinstance(data, dict) else None
    if event_type not in KNOWN_EVENT_TYPES:
        raise UnknownEventTypeError(str(event_type))
    return _domain_event_adapter.validate_python(data)
