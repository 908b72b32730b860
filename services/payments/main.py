"""
Payments API.

Authorize / capture / fail with idempotent authorization. The outbox
publisher runs in ``python -m services.payments.workers``.
"""
from __future__ import annotations

import uvicorn
from fastapi import FastAPI

from services.payments.config import PaymentsConfig, SERVICE_NAME, load_config
from services.payments.models import Base, OutboxEvent
from services.payments.routes import build_router
from services.payments.service import PaymentService
from services.shared.app import create_service_app
from services.shared.auth import Authenticator, load_authenticator
from services.shared.database import Database


def create_app(
    config: PaymentsConfig | None = None,
    database: Database | None = None,
    auth: Authenticator | None = None,
) -> FastAPI:
    config = config or load_config()
    database = database or Database(config.database_url, Base.metadata)
    service = PaymentService(database)
    return create_service_app(
        name=SERVICE_NAME,
        title="Payments Service",
        database=database,
        routers=[build_router(service, auth or load_authenticator(), config.internal_secret)],
        outbox_model=OutboxEvent,
        internal_secret=config.internal_secret,
    )


app = create_app()

if __name__ == "__main__":
    uvicorn.run("services.payments.main:app", host="0.0.0.0", port=8000, reload=False)
