"""Fulfillment API: shipping options and one shipment per order."""
from __future__ import annotations

import uvicorn
from fastapi import FastAPI

from services.fulfillment.config import FulfillmentConfig, SERVICE_NAME, load_config
from services.fulfillment.models import Base
from services.fulfillment.routes import build_router
from services.fulfillment.service import FulfillmentService
from services.shared.app import create_service_app
from services.shared.database import Database


def create_app(
    config: FulfillmentConfig | None = None,
    database: Database | None = None,
) -> FastAPI:
    config = config or load_config()
    database = database or Database(config.database_url, Base.metadata)
    service = FulfillmentService(database, config)
    return create_service_app(
        name=SERVICE_NAME,
        title="Fulfillment Service",
        database=database,
        routers=[build_router(service, config.internal_secret)],
        internal_secret=config.internal_secret,
    )


app = create_app()

if __name__ == "__main__":
    uvicorn.run("services.fulfillment.main:app", host="0.0.0.0", port=8000, reload=False)
