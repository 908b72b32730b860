"""Inventory background process: outbox publisher, order-events consumer, expirer."""
from __future__ import annotations

import asyncio

from services.inventory.config import SERVICE_NAME, load_config
from services.inventory.consumer import OrderEventsConsumer
from services.inventory.expirer import ReservationExpirer
from services.inventory.models import Base, OutboxEvent
from services.inventory.service import InventoryService
from services.shared.broker import RabbitMqClient
from services.shared.database import Database
from services.shared.outbox import OutboxPublisherWorker
from services.shared.worker import run_workers


async def main() -> None:
    config = load_config()
    database = Database(config.database_url, Base.metadata)
    service = InventoryService(database, default_ttl_seconds=config.reservation_ttl_seconds)

    outbox = OutboxPublisherWorker(
        service=SERVICE_NAME,
        database=database,
        model=OutboxEvent,
        publisher=RabbitMqClient(config.broker),
        config=config.outbox,
    )
    consumer = OrderEventsConsumer(service, RabbitMqClient(config.broker), config)
    expirer = ReservationExpirer(service, config.expirer)

    await run_workers(
        "inventory-workers",
        [outbox, expirer],
        on_start=[database.create_all, consumer.start],
        on_shutdown=[consumer.stop, database.dispose],
    )


if __name__ == "__main__":
    asyncio.run(main())
