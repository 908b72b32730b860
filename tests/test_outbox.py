from __future__ import annotations

import asyncio
import random

from sqlalchemy import select

from services.orders.main import create_app
from services.orders.config import OrdersConfig
from services.orders.models import OutboxEvent
from services.orders.service import OrderService
from services.shared import events
from services.shared.config import WorkerConfig
from services.shared.outbox import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PUBLISHED,
    OutboxPublisherWorker,
)
from tests.helpers import (
    BROKER,
    FAST_WORKER,
    INTERNAL_SECRET,
    SNAPSHOT_SECRET,
    FakePublisher,
    api_client,
    dev_auth,
    endpoint,
    eventually,
    signed_snapshot,
)


def _worker(database, publisher, config: WorkerConfig = FAST_WORKER) -> OutboxPublisherWorker:
    return OutboxPublisherWorker(
        service="orders",
        database=database,
        model=OutboxEvent,
        publisher=publisher,
        config=config,
    )


async def _place_order(database, key: str = "key-1") -> str:
    service = OrderService(database, snapshot_secret=SNAPSHOT_SECRET)
    result = await service.create_order(signed_snapshot(), key, correlation_id="req-1")
    return result.response["orderId"]


async def _statuses(database) -> list[str]:
    async with database.session() as session:
        result = await session.execute(select(OutboxEvent.status))
        return list(result.scalars())


async def test_pending_rows_are_published_once(orders_db, publisher):
    order_id = await _place_order(orders_db)
    worker = _worker(orders_db, publisher)

    assert await worker.run_once() == 1
    assert await worker.run_once() == 0

    assert len(publisher.published) == 1
    envelope, routing_key = publisher.published[0]
    assert envelope.type == events.ORDERS_ORDER_PLACED
    assert envelope.aggregate_id == order_id
    assert envelope.correlation_id == "req-1"
    assert envelope.payload["orderId"] == order_id
    assert routing_key == events.ORDERS_ORDER_PLACED
    assert await _statuses(orders_db) == [STATUS_PUBLISHED]


async def test_publish_failure_marks_row_failed_and_never_retries(orders_db):
    await _place_order(orders_db)
    failing = FakePublisher(fail=True)
    worker = _worker(orders_db, failing)

    assert await worker.run_once() == 0
    assert await _statuses(orders_db) == [STATUS_FAILED]

    failing.fail = False
    assert await worker.run_once() == 0
    assert failing.published == []

    async with orders_db.session() as session:
        row = (await session.execute(select(OutboxEvent))).scalar_one()
    assert "ConnectionError" in row.error


async def test_a_claimed_row_is_skipped_by_other_workers(orders_db, publisher):
    await _place_order(orders_db)
    first = _worker(orders_db, publisher)
    second = _worker(orders_db, publisher)

    async with orders_db.session() as session:
        row_id = (await session.execute(select(OutboxEvent.id))).scalar_one()
    assert await first._claim(row_id) is True
    assert await second._claim(row_id) is False

    assert await second.run_once() == 0
    assert publisher.published == []


async def test_stop_closes_the_publisher(orders_db, publisher):
    worker = _worker(orders_db, publisher)
    await worker.stop()
    assert worker.stopped
    assert publisher.closed


async def test_failed_rows_are_listed_for_operators(orders_db):
    await _place_order(orders_db, "key-a")
    await _place_order(orders_db, "key-b")
    await _worker(orders_db, FakePublisher(fail=True)).run_once()

    config = OrdersConfig(
        database_url="unused",
        broker=BROKER,
        outbox=FAST_WORKER,
        snapshot_secret=SNAPSHOT_SECRET,
        internal_secret=INTERNAL_SECRET,
        payments=endpoint("payments"),
        fulfillment=endpoint("fulfillment"),
        inventory_events_queue="orders.inventory-events",
        dead_letter_exchange=None,
        cancel_on_payment_failure=True,
    )
    app = create_app(config, orders_db, dev_auth())
    async with api_client(app) as client:
        denied = await client.get("/internal/outbox/failed")
        assert denied.status_code == 401

        response = await client.get(
            "/internal/outbox/failed", headers={"x-internal-service-secret": INTERNAL_SECRET}
        )
    assert response.status_code == 200
    items = response.json()["items"]
    assert len(items) == 2
    assert {item["type"] for item in items} == {events.ORDERS_ORDER_PLACED}
    assert all(item["error"] for item in items)


async def test_new_rows_start_pending(orders_db):
    await _place_order(orders_db)
    assert await _statuses(orders_db) == [STATUS_PENDING]


async def test_run_publishes_then_idles_until_stopped(orders_db, publisher):
    await _place_order(orders_db)
    worker = _worker(orders_db, publisher, WorkerConfig(batch_size=25, poll_interval_seconds=30.0))

    task = asyncio.create_task(worker.run())
    await eventually(lambda: len(publisher.published) == 1)
    await asyncio.sleep(0.05)
    assert not task.done()

    await worker.stop()
    await asyncio.wait_for(task, timeout=1.0)

    assert worker.stopped
    assert publisher.closed
    assert len(publisher.published) == 1


async def test_batch_errors_back_off_and_the_loop_keeps_going(orders_db, publisher, monkeypatch):
    worker = _worker(orders_db, publisher)
    attempts = 0
    delays: list[tuple[float, float]] = []

    async def broken_batch() -> int:
        nonlocal attempts
        attempts += 1
        raise RuntimeError("database unavailable")

    def short_backoff(low: float, high: float) -> float:
        delays.append((low, high))
        return 0.01

    monkeypatch.setattr(worker, "run_once", broken_batch)
    monkeypatch.setattr(random, "uniform", short_backoff)

    task = asyncio.create_task(worker.run())
    await eventually(lambda: attempts >= 3)
    await worker.stop()
    await asyncio.wait_for(task, timeout=1.0)

    assert delays[0] == (5.0, 15.0)
    assert len(delays) >= 2
