"""
Catalog API.

Products, variants and prices with an outbox-backed create/update. The
outbox publisher runs in ``python -m services.catalog.workers``.
"""
from __future__ import annotations

import uvicorn
from fastapi import FastAPI

from services.catalog.config import CatalogConfig, SERVICE_NAME, load_config
from services.catalog.models import Base, OutboxEvent
from services.catalog.routes import build_router
from services.catalog.service import CatalogService
from services.shared.app import create_service_app
from services.shared.auth import Authenticator, load_authenticator
from services.shared.database import Database


def create_app(
    config: CatalogConfig | None = None,
    database: Database | None = None,
    auth: Authenticator | None = None,
) -> FastAPI:
    config = config or load_config()
    database = database or Database(config.database_url, Base.metadata)
    service = CatalogService(database)
    return create_service_app(
        name=SERVICE_NAME,
        title="Catalog Service",
        database=database,
        routers=[build_router(service, auth or load_authenticator())],
        outbox_model=OutboxEvent,
        internal_secret=config.internal_secret,
    )


app = create_app()

if __name__ == "__main__":
    uvicorn.run("services.catalog.main:app", host="0.0.0.0", port=8000, reload=False)
