"""
Orders API.

Verifies signed cart snapshots and records orders with their
OrderPlaced event. The outbox publisher and the inventory-events saga
consumer run in ``python -m services.orders.workers``.
"""
from __future__ import annotations

import uvicorn
from fastapi import FastAPI

from services.orders.config import OrdersConfig, SERVICE_NAME, load_config
from services.orders.models import Base, OutboxEvent
from services.orders.routes import build_router
from services.orders.service import OrderService
from services.shared.app import create_service_app
from services.shared.auth import Authenticator, load_authenticator
from services.shared.database import Database


def create_app(
    config: OrdersConfig | None = None,
    database: Database | None = None,
    auth: Authenticator | None = None,
) -> FastAPI:
    config = config or load_config()
    database = database or Database(config.database_url, Base.metadata)
    service = OrderService(database, snapshot_secret=config.snapshot_secret)
    return create_service_app(
        name=SERVICE_NAME,
        title="Orders Service",
        database=database,
        routers=[build_router(service, auth or load_authenticator())],
        outbox_model=OutboxEvent,
        internal_secret=config.internal_secret,
    )


app = create_app()

if __name__ == "__main__":
    uvicorn.run("services.orders.main:app", host="0.0.0.0", port=8000, reload=False)
