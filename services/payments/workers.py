"""Payments background process: outbox publisher."""
from __future__ import annotations

import asyncio

from services.payments.config import SERVICE_NAME, load_config
from services.payments.models import Base, OutboxEvent
from services.shared.broker import RabbitMqClient
from services.shared.database import Database
from services.shared.outbox import OutboxPublisherWorker
from services.shared.worker import run_workers


async def main() -> None:
    config = load_config()
    database = Database(config.database_url, Base.metadata)
    outbox = OutboxPublisherWorker(
        service=SERVICE_NAME,
        database=database,
        model=OutboxEvent,
        publisher=RabbitMqClient(config.broker),
        config=config.outbox,
    )
    await run_workers(
        "payments-workers",
        [outbox],
        on_start=[database.create_all],
        on_shutdown=[database.dispose],
    )


if __name__ == "__main__":
    asyncio.run(main())
