"""
Inventory API.

Owns stock balances and the reservation state machine. The outbox
publisher, the order-events consumer and the expiry sweeper run in
``python -m services.inventory.workers``.
"""
from __future__ import annotations

import uvicorn
from fastapi import FastAPI

from services.inventory.config import InventoryConfig, SERVICE_NAME, load_config
from services.inventory.models import Base, OutboxEvent
from services.inventory.routes import build_router
from services.inventory.service import InventoryService
from services.shared.app import create_service_app
from services.shared.database import Database


def create_app(
    config: InventoryConfig | None = None,
    database: Database | None = None,
) -> FastAPI:
    config = config or load_config()
    database = database or Database(config.database_url, Base.metadata)
    service = InventoryService(database, default_ttl_seconds=config.reservation_ttl_seconds)
    return create_service_app(
        name=SERVICE_NAME,
        title="Inventory Service",
        database=database,
        routers=[build_router(service)],
        outbox_model=OutboxEvent,
        internal_secret=config.internal_secret,
    )


app = create_app()

if __name__ == "__main__":
    uvicorn.run("services.inventory.main:app", host="0.0.0.0", port=8000, reload=False)
