from __future__ import annotations

import pytest

from services.inventory.config import InventoryConfig
from services.inventory.main import create_app
from tests.helpers import BROKER, FAST_WORKER, INTERNAL_SECRET, api_client


@pytest.fixture
def app(inventory_db):
    config = InventoryConfig(
        database_url="unused",
        broker=BROKER,
        outbox=FAST_WORKER,
        expirer=FAST_WORKER,
        reservation_ttl_seconds=600,
        order_events_queue="inventory.order-events",
        dead_letter_exchange=None,
        internal_secret=INTERNAL_SECRET,
    )
    return create_app(config, inventory_db)


async def _restock(client, sku: str, qty: int, key: str):
    return await client.post(
        "/api/inventory/adjustments",
        json={"sku": sku, "delta": qty, "reason": "restock"},
        headers={"Idempotency-Key": key},
    )


async def test_mutations_require_an_idempotency_key(app):
    async with api_client(app) as client:
        response = await client.post(
            "/api/inventory/adjustments", json={"sku": "A", "delta": 1, "reason": "restock"}
        )
    assert response.status_code == 400
    assert response.json()["code"] == "IDEMPOTENCY_KEY_REQUIRED"


async def test_repeated_adjustment_key_replays_the_first_result(app):
    async with api_client(app) as client:
        first = await _restock(client, "A", 5, "adj-1")
        second = await _restock(client, "A", 5, "adj-1")
        stock = await client.get("/api/inventory/A")

    assert first.status_code == 200
    assert first.headers["x-idempotent-replay"] == "false"
    assert second.status_code == 200
    assert second.headers["x-idempotent-replay"] == "true"
    assert second.json() == first.json()
    assert stock.json()["onHand"] == 5


async def test_reserve_commit_and_replay_over_http(app):
    async with api_client(app) as client:
        await _restock(client, "A", 5, "adj-1")
        body = {"orderId": "ord-1", "items": [{"sku": "A", "qty": 2}], "ttlSeconds": 120}

        reserved = await client.post(
            "/api/inventory/reservations", json=body, headers={"Idempotency-Key": "res-1"}
        )
        replayed = await client.post(
            "/api/inventory/reservations", json=body, headers={"Idempotency-Key": "res-1"}
        )
        committed = await client.post(
            "/api/inventory/reservations/ord-1/commit", headers={"Idempotency-Key": "com-1"}
        )
        lines = await client.get("/api/inventory/reservations/ord-1")
        stock = await client.get("/api/inventory/A")

    assert reserved.status_code == 201
    assert reserved.json()["status"] == "reserved"
    assert replayed.status_code == 201
    assert replayed.headers["x-idempotent-replay"] == "true"
    assert replayed.json() == reserved.json()
    assert committed.json()["status"] == "committed"
    assert lines.json()["items"][0]["status"] == "COMMITTED"
    assert stock.json()["onHand"] == 3


async def test_second_reservation_for_an_order_under_a_new_key_is_not_a_replay(app):
    async with api_client(app) as client:
        await _restock(client, "A", 5, "adj-1")
        body = {"orderId": "ord-1", "items": [{"sku": "A", "qty": 2}]}

        await client.post(
            "/api/inventory/reservations", json=body, headers={"Idempotency-Key": "res-1"}
        )
        fresh = await client.post(
            "/api/inventory/reservations", json=body, headers={"Idempotency-Key": "res-2"}
        )
        retried = await client.post(
            "/api/inventory/reservations", json=body, headers={"Idempotency-Key": "res-2"}
        )
        stock = await client.get("/api/inventory/A")

    assert fresh.status_code == 409
    assert fresh.headers["x-idempotent-replay"] == "false"
    assert fresh.json() == {"status": "already_reserved", "orderId": "ord-1"}
    assert retried.status_code == 409
    assert retried.headers["x-idempotent-replay"] == "true"
    assert retried.json() == fresh.json()
    assert stock.json()["reserved"] == 2
    assert stock.json()["reserved"] == 0


async def test_insufficient_stock_is_a_conflict(app):
    async with api_client(app) as client:
        await _restock(client, "A", 1, "adj-1")
        response = await client.post(
            "/api/inventory/reservations",
            json={"orderId": "ord-1", "items": [{"sku": "A", "qty": 3}]},
            headers={"Idempotency-Key": "res-1"},
        )
    assert response.status_code == 409
    body = response.json()
    assert body["reason"] == "INSUFFICIENT_STOCK"
    assert body["insufficientItems"] == [{"sku": "A", "qty": 3, "available": 1}]


async def test_release_without_body_uses_default_reason(app):
    async with api_client(app) as client:
        await _restock(client, "A", 4, "adj-1")
        await client.post(
            "/api/inventory/reservations",
            json={"orderId": "ord-1", "items": [{"sku": "A", "qty": 4}]},
            headers={"Idempotency-Key": "res-1"},
        )
        released = await client.post(
            "/api/inventory/reservations/ord-1/release", headers={"Idempotency-Key": "rel-1"}
        )
        stock = await client.get("/api/inventory/A")

    assert released.json()["status"] == "released"
    assert stock.json()["available"] == 4


async def test_unknown_sku_is_not_found(app):
    async with api_client(app) as client:
        response = await client.get("/api/inventory/NOPE")
    assert response.status_code == 404
    assert response.json()["code"] == "SKU_NOT_FOUND"


async def test_health_and_request_id_echo(app):
    async with api_client(app) as client:
        response = await client.get("/health", headers={"X-Request-Id": "req-42"})
    assert response.json() == {"status": "ok", "service": "inventory"}
    assert response.headers["X-Request-Id"] == "req-42"
