"""
Inventory events consumer for the orders service.

inventory.stock.reserved.v1 confirms the order and, only on the first
successful update, orchestrates payment (authorize and capture) and then
shipment creation over HTTP. A payment failure cancels the order, which
makes inventory release the reservation; a shipment failure is logged.
inventory.stock.reservation_failed.v1 rejects the order.
"""
from __future__ import annotations

from typing import Any

import structlog

from services.orders.config import OrdersConfig, SERVICE_NAME
from services.orders.service import OrderService, order_amount_cents
from services.shared.broker import CONSUMED_EVENTS, RabbitMqClient
from services.shared.errors import DownstreamError
from services.shared.events import (
    DomainEvent,
    StockReservationFailed,
    StockReserved,
    parse_event,
)
from services.shared.http_client import ServiceClient

logger = structlog.get_logger(__name__)

ROUTING_KEYS = ("inventory.stock.#",)
PAYMENT_FAILURE_REASON = "payment_orchestration_failed"


class InventoryEventsConsumer:
    def __init__(
        self,
        service: OrderService,
        *,
        payments: ServiceClient,
        fulfillment: ServiceClient,
        cancel_on_payment_failure: bool = True,
        broker: RabbitMqClient | None = None,
        config: OrdersConfig | None = None,
    ) -> None:
        self._service = service
        self._payments = payments
        self._fulfillment = fulfillment
        self._cancel_on_payment_failure = cancel_on_payment_failure
        self._broker = broker
        self._config = config

    async def start(self) -> None:
        if self._broker is None or self._config is None:
            raise RuntimeError("consumer needs a broker and config to subscribe")
        await self._broker.subscribe(
            queue=self._config.inventory_events_queue,
            routing_keys=ROUTING_KEYS,
            handler=self._on_message,
            parser=parse_event,
            dead_letter_exchange=self._config.dead_letter_exchange,
        )

    async def stop(self) -> None:
        if self._broker is not None:
            await self._broker.close()
        await self._payments.aclose()
        await self._fulfillment.aclose()

    async def _on_message(self, event: DomainEvent, message: Any) -> None:
        await self.handle(event)

    async def handle(self, event: DomainEvent) -> str:
        if isinstance(event, StockReserved):
            result = await self._service.mark_inventory_reserved(
                event.payload.order_id, message_id=event.id, source=event.type
            )
            outcome = result.status
            if result.status == "updated" and result.order is not None:
                try:
                    await self._orchestrate(result.order, event)
                except Exception as exc:
                    # The order mark is committed; redelivery would not orchestrate again.
                    logger.exception(
                        "downstream_orchestration_failed",
                        order_id=result.order["id"],
                        error=f"{type(exc).__name__}: {exc}",
                    )
        elif isinstance(event, StockReservationFailed):
            result = await self._service.mark_inventory_failed(
                event.payload.order_id,
                event.payload.reason,
                message_id=event.id,
                source=event.type,
            )
            outcome = result.status
        else:
            outcome = "ignored"

        CONSUMED_EVENTS.labels(service=SERVICE_NAME, event_type=event.type, outcome=outcome).inc()
        logger.info("inventory_event_handled", event_id=event.id, event_type=event.type, outcome=outcome)
        return outcome

    async def _orchestrate(self, order: dict[str, Any], event: DomainEvent) -> None:
        order_id = order["id"]
        correlation_id = event.correlation_id or event.id
        try:
            await self._payments.post(
                "/api/payments/internal/authorize-and-capture",
                json={
                    "orderId": order_id,
                    "amountCents": order_amount_cents(order),
                    "currency": order["currency"],
                    "correlationId": correlation_id,
                },
            )
        except DownstreamError as exc:
            logger.error(
                "payment_orchestration_failed",
                order_id=order_id,
                error=exc.message,
                code=exc.code,
            )
            if self._cancel_on_payment_failure:
                await self._service.cancel_order(
                    order_id,
                    PAYMENT_FAILURE_REASON,
                    correlation_id=correlation_id,
                    causation_id=event.id,
                )
            return

        try:
            await self._fulfillment.post("/api/fulfillment/shipments", json={"orderId": order_id})
        except DownstreamError as exc:
            logger.error(
                "fulfillment_orchestration_failed",
                order_id=order_id,
                error=exc.message,
                code=exc.code,
            )
            return

        logger.info("order_orchestration_completed", order_id=order_id)
