from __future__ import annotations

import json

import httpx
import pytest

from services.orders.consumer import PAYMENT_FAILURE_REASON, InventoryEventsConsumer
from services.orders.models import OrderStatus
from services.orders.service import OrderService
from services.shared import events
from services.shared.http_client import ServiceClient
from tests.helpers import INTERNAL_SECRET, SNAPSHOT_SECRET, domain_event, endpoint, signed_snapshot


class Downstream:
    """Fake payments and fulfillment services recording every call."""

    def __init__(self, *, payments_status: int = 200, fulfillment_status: int = 201) -> None:
        self.payments_status = payments_status
        self.fulfillment_status = fulfillment_status
        self.calls: list[tuple[str, dict, httpx.Headers]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        self.calls.append((request.url.path, body, request.headers))
        if request.url.host == "payments.test":
            return httpx.Response(self.payments_status, json={"payment": {"status": "captured"}})
        return httpx.Response(self.fulfillment_status, json={"shipmentId": "shp_1"})

    def client(self, name: str) -> ServiceClient:
        return ServiceClient(
            endpoint(name),
            internal_secret=INTERNAL_SECRET,
            transport=httpx.MockTransport(self.handler),
        )

    @property
    def paths(self) -> list[str]:
        return [path for path, _, _ in self.calls]


@pytest.fixture
def orders(orders_db) -> OrderService:
    return OrderService(orders_db, snapshot_secret=SNAPSHOT_SECRET)


def _consumer(orders: OrderService, downstream: Downstream, **kwargs) -> InventoryEventsConsumer:
    return InventoryEventsConsumer(
        orders,
        payments=downstream.client("payments"),
        fulfillment=downstream.client("fulfillment"),
        **kwargs,
    )


async def _new_order(orders: OrderService) -> str:
    result = await orders.create_order(signed_snapshot(), "key-1", correlation_id="req-1")
    return result.response["orderId"]


def _reserved(order_id: str):
    return domain_event(
        events.INVENTORY_STOCK_RESERVED,
        {"orderId": order_id, "items": [{"sku": "SKU-1", "qty": 2}]},
        aggregate_id=order_id,
        aggregate_type="reservation",
        correlation_id="req-1",
    )


async def test_reserved_confirms_then_pays_then_ships(orders):
    order_id = await _new_order(orders)
    downstream = Downstream()
    consumer = _consumer(orders, downstream)

    assert await consumer.handle(_reserved(order_id)) == "updated"

    assert downstream.paths == [
        "/api/payments/internal/authorize-and-capture",
        "/api/fulfillment/shipments",
    ]
    _, payment_body, payment_headers = downstream.calls[0]
    assert payment_body == {
        "orderId": order_id,
        "amountCents": 2500,
        "currency": "USD",
        "correlationId": "req-1",
    }
    assert payment_headers["x-internal-service-secret"] == INTERNAL_SECRET
    assert downstream.calls[1][1] == {"orderId": order_id}
    assert (await orders.get_order(order_id))["status"] == OrderStatus.CONFIRMED


async def test_redelivered_reserved_event_does_not_pay_twice(orders):
    order_id = await _new_order(orders)
    downstream = Downstream()
    consumer = _consumer(orders, downstream)
    event = _reserved(order_id)

    await consumer.handle(event)
    assert await consumer.handle(event) == "ignored"

    assert downstream.paths.count("/api/payments/internal/authorize-and-capture") == 1


async def test_payment_failure_cancels_the_order(orders):
    order_id = await _new_order(orders)
    downstream = Downstream(payments_status=502)

    await _consumer(orders, downstream).handle(_reserved(order_id))

    order = await orders.get_order(order_id)
    assert order["status"] == OrderStatus.CANCELED
    assert order["cancellationReason"] == PAYMENT_FAILURE_REASON
    assert downstream.paths == ["/api/payments/internal/authorize-and-capture"]


async def test_failing_compensation_is_logged_not_dead_lettered(orders, monkeypatch):
    order_id = await _new_order(orders)
    downstream = Downstream(payments_status=502)

    async def broken_cancel(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(orders, "cancel_order", broken_cancel)

    assert await _consumer(orders, downstream).handle(_reserved(order_id)) == "updated"
    assert (await orders.get_order(order_id))["status"] == OrderStatus.CONFIRMED


async def test_payment_failure_can_leave_the_order_confirmed(orders):
    order_id = await _new_order(orders)
    downstream = Downstream(payments_status=500)

    await _consumer(orders, downstream, cancel_on_payment_failure=False).handle(_reserved(order_id))

    assert (await orders.get_order(order_id))["status"] == OrderStatus.CONFIRMED


async def test_fulfillment_failure_is_not_compensated(orders):
    order_id = await _new_order(orders)
    downstream = Downstream(fulfillment_status=503)

    assert await _consumer(orders, downstream).handle(_reserved(order_id)) == "updated"

    assert (await orders.get_order(order_id))["status"] == OrderStatus.CONFIRMED


async def test_reservation_failure_rejects_without_calling_downstream(orders):
    order_id = await _new_order(orders)
    downstream = Downstream()
    event = domain_event(
        events.INVENTORY_STOCK_RESERVATION_FAILED,
        {"orderId": order_id, "reason": "INSUFFICIENT_STOCK"},
        aggregate_id=order_id,
        aggregate_type="reservation",
    )

    assert await _consumer(orders, downstream).handle(event) == "updated"

    order = await orders.get_order(order_id)
    assert order["status"] == OrderStatus.REJECTED
    assert downstream.calls == []


async def test_other_inventory_events_are_ignored(orders):
    event = domain_event(
        events.INVENTORY_STOCK_COMMITTED,
        {"orderId": "ord-1", "items": []},
        aggregate_type="reservation",
    )
    assert await _consumer(orders, Downstream()).handle(event) == "ignored"
