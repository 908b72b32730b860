"""
Order/payment events consumer for the inventory service.

    orders.order_placed.v1          -> reserve
    payments.payment_authorized.v1  -> commit
    orders.order_canceled.v1        -> release
    payments.payment_failed.v1      -> release

The inbound event id is the processed-message id, so a redelivered event
changes nothing and writes no second outbox row.
"""
from __future__ import annotations

from typing import Any

import structlog

from services.inventory.config import InventoryConfig, SERVICE_NAME
from services.inventory.service import InventoryService, MessageContext
from services.shared.broker import CONSUMED_EVENTS, RabbitMqClient
from services.shared.events import (
    DomainEvent,
    OrderCanceled,
    OrderPlaced,
    PaymentAuthorized,
    PaymentFailed,
    parse_event,
)

logger = structlog.get_logger(__name__)

ROUTING_KEYS = ("orders.#", "payments.#")


class OrderEventsConsumer:
    def __init__(
        self,
        service: InventoryService,
        broker: RabbitMqClient | None = None,
        config: InventoryConfig | None = None,
    ) -> None:
        self._service = service
        self._broker = broker
        self._config = config

    async def start(self) -> None:
        if self._broker is None or self._config is None:
            raise RuntimeError("consumer needs a broker and config to subscribe")
        await self._broker.subscribe(
            queue=self._config.order_events_queue,
            routing_keys=ROUTING_KEYS,
            handler=self._on_message,
            parser=parse_event,
            dead_letter_exchange=self._config.dead_letter_exchange,
        )

    async def stop(self) -> None:
        if self._broker is not None:
            await self._broker.close()

    async def _on_message(self, event: DomainEvent, message: Any) -> None:
        await self.handle(event)

    async def handle(self, event: DomainEvent) -> str:
        """Apply one event; returns the engine outcome or ``ignored``."""
        context = MessageContext(
            message_id=event.id,
            source=event.type,
            correlation_id=event.correlation_id or event.id,
            causation_id=event.id,
        )

        if isinstance(event, OrderPlaced):
            payload = event.payload
            result = await self._service.reserve(
                payload.order_id, payload.items, payload.ttl_seconds, context
            )
            outcome = result.status
        elif isinstance(event, PaymentAuthorized):
            outcome = (await self._service.commit(event.payload.order_id, context)).status
        elif isinstance(event, OrderCanceled):
            outcome = (
                await self._service.release(
                    event.payload.order_id, event.payload.reason or "order_canceled", context=context
                )
            ).status
        elif isinstance(event, PaymentFailed):
            outcome = (
                await self._service.release(
                    event.payload.order_id, event.payload.reason or "payment_failed", context=context
                )
            ).status
        else:
            outcome = "ignored"

        CONSUMED_EVENTS.labels(service=SERVICE_NAME, event_type=event.type, outcome=outcome).inc()
        logger.info(
            "order_event_handled",
            event_id=event.id,
            event_type=event.type,
            outcome=outcome,
        )
        return outcome
