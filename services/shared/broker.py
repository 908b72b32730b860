"""
RabbitMQ client on a durable topic exchange.

publish():   JSON envelope, routing key defaults to the event type
subscribe(): durable queue bound by routing pattern, manual ack; a handler
             exception nacks without requeue so the message dead-letters
             when the queue has a dead-letter exchange, otherwise drops.

Handlers must be idempotent: a crash between processing and ack
redelivers the message.
"""
from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import aio_pika
import structlog
from aio_pika.abc import (
    AbstractChannel,
    AbstractExchange,
    AbstractIncomingMessage,
    AbstractRobustConnection,
)
from prometheus_client import Counter

from services.shared.config import BrokerConfig
from services.shared.errors import PublishError
from services.shared.events import EventEnvelope, build_routing_key

logger = structlog.get_logger(__name__)

MessageHandler = Callable[[Any, AbstractIncomingMessage], Awaitable[Any]]
EventParser = Callable[[Any], Any]

CONSUMED_EVENTS = Counter(
    "consumed_events_total",
    "Domain events handled by consumers",
    ["service", "event_type", "outcome"],
)


class RabbitMqClient:
    def __init__(self, config: BrokerConfig) -> None:
        self._config = config
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None

    @property
    def connected(self) -> bool:
        return self._exchange is not None

    async def connect(self) -> None:
        if self._exchange is not None:
            return
        self._connection = await aio_pika.connect_robust(self._config.url)
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=self._config.prefetch)
        self._exchange = await self._channel.declare_exchange(
            self._config.exchange,
            aio_pika.ExchangeType(self._config.exchange_type),
            durable=True,
        )
        logger.info(
            "broker_connected",
            exchange=self._config.exchange,
            prefetch=self._config.prefetch,
        )

    async def publish(
        self,
        envelope: EventEnvelope,
        *,
        routing_key: str | None = None,
        persistent: bool = True,
    ) -> None:
        if self._exchange is None:
            await self.connect()
        if self._exchange is None:
            raise PublishError("broker channel is not open")

        message = aio_pika.Message(
            body=json.dumps(envelope.to_wire()).encode(),
            message_id=envelope.id,
            type=envelope.type,
            correlation_id=envelope.correlation_id,
            content_type="application/json",
            delivery_mode=(
                aio_pika.DeliveryMode.PERSISTENT
                if persistent
                else aio_pika.DeliveryMode.NOT_PERSISTENT
            ),
        )
        await self._exchange.publish(
            message, routing_key=routing_key or build_routing_key(envelope.type)
        )

    async def subscribe(
        self,
        *,
        queue: str,
        handler: MessageHandler,
        routing_keys: Sequence[str] = ("domain.#",),
        parser: EventParser | None = None,
        dead_letter_exchange: str | None = None,
        dead_letter_routing_key: str | None = None,
        no_ack: bool = False,
    ) -> None:
        await self.connect()
        if self._channel is None or self._exchange is None:
            raise RuntimeError("broker channel is not open")

        arguments: dict[str, Any] = {}
        if dead_letter_exchange:
            arguments["x-dead-letter-exchange"] = dead_letter_exchange
        if dead_letter_routing_key:
            arguments["x-dead-letter-routing-key"] = dead_letter_routing_key

        declared = await self._channel.declare_queue(
            queue, durable=True, arguments=arguments or None
        )
        for routing_key in routing_keys:
            await declared.bind(self._exchange, routing_key=routing_key)

        async def on_message(message: AbstractIncomingMessage) -> None:
            try:
                event = json.loads(message.body.decode())
                if parser is not None:
                    event = parser(event)
                await handler(event, message)
            except Exception as exc:
                logger.error(
                    "broker_handler_failed",
                    queue=queue,
                    message_id=message.message_id,
                    routing_key=message.routing_key,
                    error=f"{type(exc).__name__}: {exc}",
                )
                if not no_ack:
                    await message.nack(requeue=False)
                return
            if not no_ack:
                await message.ack()

        await declared.consume(on_message, no_ack=no_ack)
        logger.info("broker_subscribed", queue=queue, routing_keys=list(routing_keys))

    async def close(self) -> None:
        """Close the channel, then the connection."""
        if self._channel is not None and not self._channel.is_closed:
            await self._channel.close()
        if self._connection is not None and not self._connection.is_closed:
            await self._connection.close()
        self._channel = None
        self._connection = None
        self._exchange = None
        logger.info("broker_closed")
