from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from services.inventory.expirer import ReservationExpirer
from services.inventory.models import InventoryReservation, OutboxEvent, ReservationStatus
from services.inventory.service import (
    REASON_INSUFFICIENT_STOCK,
    REASON_INVALID_ITEMS,
    InventoryService,
    MessageContext,
    normalize_items,
)
from services.shared import events
from services.shared.database import utcnow
from services.shared.errors import NotFoundError, ValidationError
from services.shared.config import WorkerConfig
from tests.helpers import FAST_WORKER, eventually


@pytest.fixture
def inventory(inventory_db) -> InventoryService:
    return InventoryService(inventory_db, default_ttl_seconds=600)


async def _stock(inventory: InventoryService, **levels: int) -> None:
    for sku, qty in levels.items():
        await inventory.adjust_stock(sku, qty, "restock")


async def _outbox_types(database) -> list[str]:
    async with database.session() as session:
        result = await session.execute(select(OutboxEvent.type).order_by(OutboxEvent.occurred_at))
        return list(result.scalars())


def test_normalize_items_merges_and_filters():
    items = normalize_items(
        [
            {"sku": " A ", "qty": 1},
            {"sku": "A", "qty": 2},
            {"sku": "", "qty": 4},
            {"sku": "B", "qty": 0},
            {"sku": "C", "qty": True},
        ]
    )
    assert items == [{"sku": "A", "qty": 3}]


async def test_adjust_stock_creates_and_updates_balances(inventory, inventory_db):
    first = await inventory.adjust_stock("SKU-1", 10, "restock")
    second = await inventory.adjust_stock("SKU-1", -4, "shrinkage", reference_id="audit-7")

    assert first.status == "applied"
    assert second.summary["onHand"] == 6
    summary = await inventory.get_summary("SKU-1")
    assert (summary["onHand"], summary["reserved"], summary["available"]) == (6, 0, 6)
    assert await _outbox_types(inventory_db) == [events.INVENTORY_STOCK_ADJUSTMENT_APPLIED] * 2


async def test_adjust_stock_cannot_go_below_reserved(inventory):
    await _stock(inventory, A=5)
    await inventory.reserve("ord-1", [{"sku": "A", "qty": 4}])

    with pytest.raises(ValidationError) as exc_info:
        await inventory.adjust_stock("A", -2, "shrinkage")
    assert exc_info.value.code == "INVALID_ADJUSTMENT"

    with pytest.raises(ValidationError):
        await inventory.adjust_stock("NEW", -1, "shrinkage")


async def test_adjust_stock_duplicate_message_is_ignored(inventory):
    context = MessageContext(message_id="adj-1", source="test")
    assert (await inventory.adjust_stock("A", 3, "restock", context=context)).status == "applied"
    assert (await inventory.adjust_stock("A", 3, "restock", context=context)).status == "duplicate"
    assert (await inventory.get_summary("A"))["onHand"] == 3


async def test_get_summary_missing_sku(inventory):
    with pytest.raises(NotFoundError):
        await inventory.get_summary("missing")


async def test_reserve_holds_stock_for_every_line(inventory, inventory_db):
    await _stock(inventory, A=5, B=2)

    result = await inventory.reserve(
        "ord-1", [{"sku": "A", "qty": 3}, {"sku": "B", "qty": 2}], ttl_seconds=60
    )

    assert result.status == "reserved"
    assert result.items == [{"sku": "A", "qty": 3}, {"sku": "B", "qty": 2}]
    assert result.expires_at is not None
    assert (await inventory.get_summary("A"))["available"] == 2
    assert (await inventory.get_summary("B"))["available"] == 0
    lines = await inventory.list_reservations("ord-1")
    assert [line["status"] for line in lines] == [ReservationStatus.ACTIVE] * 2
    assert (await _outbox_types(inventory_db))[-1] == events.INVENTORY_STOCK_RESERVED


async def test_reserve_is_all_or_nothing(inventory, inventory_db):
    await _stock(inventory, A=5, B=1)

    result = await inventory.reserve("ord-1", [{"sku": "A", "qty": 2}, {"sku": "B", "qty": 3}])

    assert result.status == "failed"
    assert result.reason == REASON_INSUFFICIENT_STOCK
    assert result.insufficient_items == [{"sku": "B", "qty": 3, "available": 1}]
    assert (await inventory.get_summary("A"))["reserved"] == 0
    assert await inventory.list_reservations("ord-1") == []
    assert (await _outbox_types(inventory_db))[-1] == events.INVENTORY_STOCK_RESERVATION_FAILED


async def test_reserve_unknown_sku_counts_as_zero_available(inventory):
    result = await inventory.reserve("ord-1", [{"sku": "GHOST", "qty": 1}])
    assert result.insufficient_items == [{"sku": "GHOST", "qty": 1, "available": 0}]


async def test_reserve_without_valid_items_fails(inventory):
    result = await inventory.reserve("ord-1", [{"sku": "A", "qty": 0}])
    assert result.status == "failed"
    assert result.reason == REASON_INVALID_ITEMS


async def test_reserving_the_same_order_twice_reports_already_reserved(inventory):
    await _stock(inventory, A=5)
    await inventory.reserve("ord-1", [{"sku": "A", "qty": 2}])

    again = await inventory.reserve("ord-1", [{"sku": "A", "qty": 2}])

    assert again.status == "already_reserved"
    assert (await inventory.get_summary("A"))["reserved"] == 2


async def test_commit_consumes_on_hand_and_reserved(inventory, inventory_db):
    await _stock(inventory, A=5)
    await inventory.reserve("ord-1", [{"sku": "A", "qty": 2}])

    result = await inventory.commit("ord-1")

    assert result.status == "committed"
    summary = await inventory.get_summary("A")
    assert (summary["onHand"], summary["reserved"], summary["available"]) == (3, 0, 3)
    assert (await inventory.list_reservations("ord-1"))[0]["status"] == ReservationStatus.COMMITTED
    assert (await _outbox_types(inventory_db))[-1] == events.INVENTORY_STOCK_COMMITTED

    assert (await inventory.commit("ord-1")).status == "noop"


async def test_release_returns_stock_to_available(inventory, inventory_db):
    await _stock(inventory, A=5)
    await inventory.reserve("ord-1", [{"sku": "A", "qty": 2}])

    result = await inventory.release("ord-1", "order_canceled")

    assert result.status == "released"
    assert result.items == [{"sku": "A", "qty": 2}]
    summary = await inventory.get_summary("A")
    assert (summary["onHand"], summary["reserved"]) == (5, 0)
    assert (await _outbox_types(inventory_db))[-1] == events.INVENTORY_STOCK_RESERVATION_RELEASED

    assert (await inventory.release("ord-1", "again")).status == "noop"
    assert (await inventory.commit("ord-1")).status == "noop"


async def test_duplicate_transition_messages_change_nothing(inventory, inventory_db):
    await _stock(inventory, A=5)
    await inventory.reserve("ord-1", [{"sku": "A", "qty": 2}])
    context = MessageContext(message_id="evt-9", source="payments.payment_authorized.v1")

    assert (await inventory.commit("ord-1", context)).status == "committed"
    emitted = await _outbox_types(inventory_db)
    assert (await inventory.commit("ord-1", context)).status == "duplicate"

    assert (await inventory.get_summary("A"))["onHand"] == 3
    assert await _outbox_types(inventory_db) == emitted
    assert (await inventory.load_result("evt-9"))["status"] == "committed"


async def _age_reservation(database, order_id: str) -> None:
    async with database.transaction() as session:
        await session.execute(
            update(InventoryReservation)
            .where(InventoryReservation.reservation_id == order_id)
            .values(expires_at=utcnow() - timedelta(minutes=1))
        )


async def test_expire_sweep_releases_only_overdue_reservations(inventory, inventory_db):
    await _stock(inventory, A=10)
    await inventory.reserve("ord-old", [{"sku": "A", "qty": 3}])
    await inventory.reserve("ord-new", [{"sku": "A", "qty": 4}])
    await _age_reservation(inventory_db, "ord-old")

    expirer = ReservationExpirer(inventory, FAST_WORKER)
    assert await expirer.run_once() == 1
    assert await expirer.run_once() == 0

    summary = await inventory.get_summary("A")
    assert summary["reserved"] == 4
    assert (await inventory.list_reservations("ord-old"))[0]["status"] == ReservationStatus.EXPIRED
    assert (await inventory.list_reservations("ord-new"))[0]["status"] == ReservationStatus.ACTIVE
    assert (await _outbox_types(inventory_db))[-1] == events.INVENTORY_STOCK_RESERVATION_EXPIRED


async def test_expired_reservation_cannot_be_committed(inventory, inventory_db):
    await _stock(inventory, A=2)
    await inventory.reserve("ord-1", [{"sku": "A", "qty": 2}])
    await _age_reservation(inventory_db, "ord-1")
    await inventory.expire_sweep()

    assert (await inventory.commit("ord-1")).status == "noop"
    assert (await inventory.get_summary("A"))["onHand"] == 2


async def test_expirer_loop_sweeps_then_idles_until_stopped(inventory, inventory_db, monkeypatch):
    await _stock(inventory, A=5)
    await inventory.reserve("ord-1", [{"sku": "A", "qty": 2}])
    await _age_reservation(inventory_db, "ord-1")

    sweeps: list[int] = []
    sweep = inventory.expire_sweep

    async def recording_sweep(batch_size: int) -> int:
        released = await sweep(batch_size)
        sweeps.append(released)
        return released

    monkeypatch.setattr(inventory, "expire_sweep", recording_sweep)
    expirer = ReservationExpirer(inventory, WorkerConfig(batch_size=10, poll_interval_seconds=30.0))

    task = asyncio.create_task(expirer.run())
    await eventually(lambda: sweeps == [1, 0])
    await asyncio.sleep(0.05)
    assert not task.done()
    assert sweeps == [1, 0]

    await expirer.stop()
    await asyncio.wait_for(task, timeout=1.0)

    assert (await inventory.get_summary("A"))["reserved"] == 0


async def test_expirer_survives_a_failing_sweep(inventory, monkeypatch):
    calls = 0

    async def flaky_sweep(batch_size: int) -> int:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("database unavailable")
        return 0

    monkeypatch.setattr(inventory, "expire_sweep", flaky_sweep)
    expirer = ReservationExpirer(inventory, FAST_WORKER)

    task = asyncio.create_task(expirer.run())
    await eventually(lambda: calls >= 3)
    await expirer.stop()
    await asyncio.wait_for(task, timeout=1.0)
