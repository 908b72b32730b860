from __future__ import annotations

import pytest
from sqlalchemy import func, select

from services.inventory.consumer import OrderEventsConsumer
from services.inventory.models import OutboxEvent
from services.inventory.service import InventoryService
from services.shared import events
from tests.helpers import domain_event


@pytest.fixture
def inventory(inventory_db) -> InventoryService:
    return InventoryService(inventory_db, default_ttl_seconds=600)


@pytest.fixture
def consumer(inventory) -> OrderEventsConsumer:
    return OrderEventsConsumer(inventory)


def _order_placed(order_id: str, qty: int = 2):
    return domain_event(
        events.ORDERS_ORDER_PLACED,
        {"orderId": order_id, "items": [{"sku": "A", "qty": qty}], "ttlSeconds": 300},
        aggregate_id=order_id,
    )


async def _outbox_count(database) -> int:
    async with database.session() as session:
        return (await session.execute(select(func.count()).select_from(OutboxEvent))).scalar_one()


async def test_redelivered_order_placed_reserves_once(consumer, inventory, inventory_db):
    await inventory.adjust_stock("A", 5, "restock")
    event = _order_placed("ord-1")

    assert await consumer.handle(event) == "reserved"
    emitted = await _outbox_count(inventory_db)
    assert await consumer.handle(event) == "duplicate"

    assert (await inventory.get_summary("A"))["reserved"] == 2
    assert await _outbox_count(inventory_db) == emitted


async def test_reserved_event_carries_correlation_and_causation(consumer, inventory, inventory_db):
    await inventory.adjust_stock("A", 5, "restock")
    event = _order_placed("ord-1")
    await consumer.handle(event)

    async with inventory_db.session() as session:
        row = (
            await session.execute(
                select(OutboxEvent).where(OutboxEvent.type == events.INVENTORY_STOCK_RESERVED)
            )
        ).scalar_one()
    assert row.correlation_id == "corr-1"
    assert row.causation_id == event.id


async def test_payment_authorized_commits(consumer, inventory):
    await inventory.adjust_stock("A", 5, "restock")
    await consumer.handle(_order_placed("ord-1"))

    outcome = await consumer.handle(
        domain_event(
            events.PAYMENTS_PAYMENT_AUTHORIZED,
            {"paymentId": "pay-1", "orderId": "ord-1", "amountCents": 100, "currency": "USD"},
            aggregate_type="payment",
        )
    )

    assert outcome == "committed"
    assert (await inventory.get_summary("A"))["onHand"] == 3


@pytest.mark.parametrize(
    ("event_type", "payload"),
    [
        (events.ORDERS_ORDER_CANCELED, {"orderId": "ord-1", "reason": "customer_request"}),
        (events.PAYMENTS_PAYMENT_FAILED, {"paymentId": "pay-1", "orderId": "ord-1"}),
    ],
)
async def test_cancel_and_payment_failure_release(consumer, inventory, event_type, payload):
    await inventory.adjust_stock("A", 5, "restock")
    await consumer.handle(_order_placed("ord-1"))

    assert await consumer.handle(domain_event(event_type, payload)) == "released"
    assert (await inventory.get_summary("A"))["available"] == 5


async def test_unrelated_events_are_ignored(consumer):
    event = domain_event(
        events.PAYMENTS_PAYMENT_CAPTURED,
        {"paymentId": "pay-1", "orderId": "ord-1"},
        aggregate_type="payment",
    )
    assert await consumer.handle(event) == "ignored"


async def test_start_requires_broker_and_config(consumer):
    with pytest.raises(RuntimeError):
        await consumer.start()
