"""
Transactional outbox.

Services write an outbox row in the same transaction as the state change
it describes. OutboxPublisherWorker drains pending rows to the broker:

    pending -> processing (conditional UPDATE, one winner per row)
    processing -> published | failed

Failed rows are never re-pended; they are counted and listed for
operators through GET /internal/outbox/failed.
"""
from __future__ import annotations

import asyncio
import random
from datetime import datetime
from typing import Any, Protocol

import structlog
from fastapi import APIRouter, Depends, Query
from prometheus_client import Counter
from sqlalchemy import JSON, DateTime, String, Text, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from services.shared.config import WorkerConfig
from services.shared.database import Database, to_iso, utcnow
from services.shared.events import Aggregate, EventEnvelope, EVENT_VERSION, build_routing_key

logger = structlog.get_logger(__name__)

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_PUBLISHED = "published"
STATUS_FAILED = "failed"

OUTBOX_PUBLISHED = Counter(
    "outbox_events_published_total",
    "Outbox events published to the broker",
    ["service"],
)
OUTBOX_FAILED = Counter(
    "outbox_events_failed_total",
    "Outbox events whose publish failed and were marked failed",
    ["service"],
)


class EventPublisher(Protocol):
    async def publish(
        self,
        envelope: EventEnvelope,
        *,
        routing_key: str | None = None,
        persistent: bool = True,
    ) -> None: ...

    async def close(self) -> None: ...


class OutboxEventMixin:
    """Columns shared by every service's outbox table."""

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(150), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(255), nullable=False)
    aggregate_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    correlation_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    causation_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=STATUS_PENDING, index=True
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


def add_outbox_event(session: AsyncSession, model: type, envelope: EventEnvelope) -> Any:
    """Stage an outbox row on the caller's transaction."""
    row = model(
        id=envelope.id,
        type=envelope.type,
        aggregate_id=envelope.aggregate_id,
        aggregate_type=envelope.aggregate_type,
        payload=envelope.to_wire()["payload"],
        occurred_at=utcnow(),
        correlation_id=envelope.correlation_id,
        causation_id=envelope.causation_id,
        status=STATUS_PENDING,
    )
    session.add(row)
    return row


def envelope_from_row(row: Any) -> EventEnvelope:
    return EventEnvelope(
        id=row.id,
        type=row.type,
        occurred_at=to_iso(row.occurred_at),
        aggregate=Aggregate(id=row.aggregate_id, type=row.aggregate_type, version=EVENT_VERSION),
        correlation_id=row.correlation_id,
        causation_id=row.causation_id,
        payload=row.payload,
    )


def describe_error(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


class OutboxPublisherWorker:
    """Poll loop publishing one service's pending outbox rows."""

    def __init__(
        self,
        *,
        service: str,
        database: Database,
        model: type,
        publisher: EventPublisher,
        config: WorkerConfig,
    ) -> None:
        self._service = service
        self._database = database
        self._model = model
        self._publisher = publisher
        self._config = config
        self._stop_event = asyncio.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    async def run_once(self) -> int:
        """Drain one batch; returns how many rows were published."""
        model = self._model
        async with self._database.session() as session:
            result = await session.execute(
                select(model)
                .where(model.status == STATUS_PENDING)
                .order_by(model.occurred_at)
                .limit(self._config.batch_size)
            )
            rows = result.scalars().all()

        published = 0
        for row in rows:
            if not await self._claim(row.id):
                logger.debug("outbox_event_already_claimed", event_id=row.id)
                continue

            envelope = envelope_from_row(row)
            try:
                await self._publisher.publish(
                    envelope, routing_key=build_routing_key(row.type), persistent=True
                )
            except Exception as exc:
                await self._finish(row.id, STATUS_FAILED, error=describe_error(exc))
                OUTBOX_FAILED.labels(service=self._service).inc()
                logger.error(
                    "outbox_publish_failed",
                    service=self._service,
                    event_id=row.id,
                    event_type=row.type,
                    error=describe_error(exc),
                )
                continue

            await self._finish(row.id, STATUS_PUBLISHED)
            OUTBOX_PUBLISHED.labels(service=self._service).inc()
            published += 1
            logger.info(
                "outbox_event_published",
                service=self._service,
                event_id=row.id,
                event_type=row.type,
            )

        return published

    async def run(self) -> None:
        """Run until stop() is called."""
        logger.info(
            "outbox_worker_started",
            service=self._service,
            batch_size=self._config.batch_size,
            poll_interval=self._config.poll_interval_seconds,
        )
        while not self._stop_event.is_set():
            try:
                published = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                delay = random.uniform(5.0, 15.0)
                logger.error(
                    "outbox_worker_batch_error",
                    service=self._service,
                    error=describe_error(exc),
                    backoff_seconds=round(delay, 2),
                )
                await self._sleep(delay)
                continue

            if published == 0:
                await self._sleep(self._config.poll_interval_seconds)
        logger.info("outbox_worker_stopped", service=self._service)

    async def stop(self) -> None:
        """Cancel any pending sleep and close the broker connection."""
        self._stop_event.set()
        await self._publisher.close()

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _claim(self, event_id: str) -> bool:
        model = self._model
        async with self._database.transaction() as session:
            result = await session.execute(
                update(model)
                .where(model.id == event_id, model.status == STATUS_PENDING)
                .values(status=STATUS_PROCESSING)
            )
            return result.rowcount == 1

    async def _finish(self, event_id: str, status: str, *, error: str | None = None) -> None:
        model = self._model
        values: dict[str, Any] = {"status": status, "error": error}
        if status == STATUS_PUBLISHED:
            values["published_at"] = utcnow()
        async with self._database.transaction() as session:
            await session.execute(
                update(model)
                .where(model.id == event_id, model.status == STATUS_PROCESSING)
                .values(**values)
            )


async def list_failed_events(session: AsyncSession, model: type, limit: int = 100) -> list[Any]:
    result = await session.execute(
        select(model)
        .where(model.status == STATUS_FAILED)
        .order_by(model.occurred_at)
        .limit(limit)
    )
    return list(result.scalars().all())


def build_outbox_router(database: Database, model: type, internal_guard: Any) -> APIRouter:
    """Operator endpoint listing outbox rows the worker gave up on."""
    router = APIRouter(tags=["outbox"])

    @router.get("/internal/outbox/failed", dependencies=[Depends(internal_guard)])
    async def failed_outbox_events(
        limit: int = Query(default=100, ge=1, le=1000),
        session: AsyncSession = Depends(database.get_session),
    ) -> dict:
        rows = await list_failed_events(session, model, limit)
        return {
            "items": [
                {
                    "id": row.id,
                    "type": row.type,
                    "aggregateId": row.aggregate_id,
                    "aggregateType": row.aggregate_type,
                    "occurredAt": to_iso(row.occurred_at),
                    "error": row.error,
                }
                for row in rows
            ]
        }

    return router
