"""FastAPI application wiring shared by every service."""
from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from typing import Any, Protocol

import structlog
from fastapi import APIRouter, FastAPI
from prometheus_client import make_asgi_app

from services.shared.auth import require_internal_secret
from services.shared.database import Database
from services.shared.errors import install_error_handlers
from services.shared.log import configure_logging
from services.shared.middleware import RequestContextMiddleware
from services.shared.outbox import build_outbox_router

logger = structlog.get_logger(__name__)


class BackgroundWorker(Protocol):
    async def run(self) -> None: ...

    async def stop(self) -> None: ...


def create_service_app(
    *,
    name: str,
    title: str,
    database: Database | None = None,
    routers: Sequence[APIRouter],
    outbox_model: type | None = None,
    internal_secret: str,
    workers: Sequence[BackgroundWorker] = (),
    on_shutdown: Sequence[Callable[[], Awaitable[Any]]] = (),
) -> FastAPI:
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("service_startup", service=name)
        if database is not None:
            await database.create_all()
        tasks = [asyncio.create_task(worker.run()) for worker in workers]
        yield
        for worker in workers:
            await worker.stop()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for callback in on_shutdown:
            await callback()
        if database is not None:
            await database.dispose()
        logger.info("service_shutdown", service=name)

    app = FastAPI(title=title, version="1.0.0", lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)
    install_error_handlers(app)

    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)

    for router in routers:
        app.include_router(router)
    if outbox_model is not None and database is not None:
        app.include_router(
            build_outbox_router(database, outbox_model, require_internal_secret(internal_secret))
        )

    @app.get("/health", summary="Health check")
    async def health() -> dict:
        return {"status": "ok", "service": name}

    return app
