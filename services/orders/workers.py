"""Orders background process: outbox publisher and inventory-events saga consumer."""
from __future__ import annotations

import asyncio

from services.orders.config import SERVICE_NAME, load_config
from services.orders.consumer import InventoryEventsConsumer
from services.orders.models import Base, OutboxEvent
from services.orders.service import OrderService
from services.shared.broker import RabbitMqClient
from services.shared.database import Database
from services.shared.http_client import ServiceClient
from services.shared.outbox import OutboxPublisherWorker
from services.shared.worker import run_workers


async def main() -> None:
    config = load_config()
    database = Database(config.database_url, Base.metadata)
    service = OrderService(database, snapshot_secret=config.snapshot_secret)

    outbox = OutboxPublisherWorker(
        service=SERVICE_NAME,
        database=database,
        model=OutboxEvent,
        publisher=RabbitMqClient(config.broker),
        config=config.outbox,
    )
    consumer = InventoryEventsConsumer(
        service,
        payments=ServiceClient(config.payments, internal_secret=config.internal_secret),
        fulfillment=ServiceClient(config.fulfillment, internal_secret=config.internal_secret),
        cancel_on_payment_failure=config.cancel_on_payment_failure,
        broker=RabbitMqClient(config.broker),
        config=config,
    )

    await run_workers(
        "orders-workers",
        [outbox],
        on_start=[database.create_all, consumer.start],
        on_shutdown=[consumer.stop, database.dispose],
    )


if __name__ == "__main__":
    asyncio.run(main())
