from __future__ import annotations

from typing import Any

import pytest

from services.cart.config import CartConfig
from services.cart.errors import CartCheckoutError, CartItemNotFoundError, CartValidationError
from services.cart.main import create_app
from services.cart.models import CartItem, item_key, normalize_options
from services.cart.service import CartContext, CartService
from services.cart.store import InMemoryCartStore
from services.orders.service import OrderService
from services.shared.errors import DownstreamAbortError
from services.shared.http_idempotency import IdempotentResponder, InMemoryResponseStore
from services.shared.signing import verify_document
from tests.helpers import SNAPSHOT_SECRET, api_client, dev_auth

PRICES = {"TEE": 1500, "MUG": 800}


class FakePricing:
    def __init__(self, prices: dict[str, int] | None = None, *, fail: bool = False) -> None:
        self.prices = PRICES if prices is None else prices
        self.fail = fail

    async def quote(self, items: list[CartItem], currency: str | None = None) -> list[dict[str, Any]]:
        if self.fail:
            raise DownstreamAbortError("catalog", "connection reset")
        return [
            {
                "sku": item.sku,
                "variantId": item.variant_id,
                "selectedOptions": item.selected_options,
                "unitPriceCents": self.prices[item.sku],
                "currency": "USD",
                "title": item.sku.title(),
            }
            for item in items
            if item.sku in self.prices
        ]


class FakeOrders:
    def __init__(self) -> None:
        self.snapshots: list[dict[str, Any]] = []

    async def place_order(self, snapshot: dict[str, Any]) -> str:
        self.snapshots.append(snapshot)
        return f"order-{len(self.snapshots)}"


def _service(**kwargs) -> CartService:
    options = {
        "default_currency": "usd",
        "max_qty_per_item": 5,
        "snapshot_secret": SNAPSHOT_SECRET,
        "pricing": FakePricing(),
    }
    options.update(kwargs)
    return CartService(InMemoryCartStore(), **options)


CONFIG = CartConfig(
    redis_url="redis://unused:6379/0",
    default_currency="USD",
    cart_ttl_seconds=3600,
    user_cart_ttl_seconds=7200,
    idempotency_ttl_seconds=600,
    max_qty_per_item=5,
    snapshot_secret=SNAPSHOT_SECRET,
    catalog=None,
    orders=None,
)


@pytest.fixture
def orders_client() -> FakeOrders:
    return FakeOrders()


@pytest.fixture
def app(orders_client):
    return create_app(
        CONFIG,
        store=InMemoryCartStore(),
        responder=IdempotentResponder(InMemoryResponseStore(), ttl_seconds=600, namespace="cart"),
        pricing=FakePricing(),
        orders=orders_client,
        auth=dev_auth(),
    )


def test_item_key_normalizes_identity():
    options = normalize_options({" Size ": "M", "color": "red", "empty": " "})
    assert options == {"color": "red", "size": "M"}
    assert item_key("TEE", "V-1", options) == "tee|v-1|color:red|size:M"


async def test_add_item_creates_an_anonymous_cart_and_merges_lines():
    service = _service()
    first = await service.add_item(CartContext(), " tee ", 2)
    cart_id = first.cart.id
    second = await service.add_item(CartContext(cart_id=cart_id), "TEE", 1)

    assert first.created is True
    assert second.created is False
    assert [(item.sku, item.qty) for item in second.cart.items] == [("TEE", 3)]
    assert second.cart.version > first.cart.version


async def test_quantity_cap_and_negative_quantities():
    service = _service()
    cart_id = (await service.add_item(CartContext(), "TEE", 4)).cart.id
    context = CartContext(cart_id=cart_id)

    with pytest.raises(CartValidationError):
        await service.add_item(context, "TEE", 2)
    with pytest.raises(CartValidationError):
        await service.update_item_quantity(context, "TEE", delta=-5)

    emptied = await service.update_item_quantity(context, "TEE", qty=0)
    assert emptied.items == []
    with pytest.raises(CartItemNotFoundError):
        await service.remove_item(context, "TEE")


async def test_lines_with_different_options_are_separate():
    service = _service()
    cart_id = (await service.add_item(CartContext(), "TEE", 1, selected_options={"size": "M"})).cart.id
    context = CartContext(cart_id=cart_id)
    await service.add_item(context, "TEE", 1, selected_options={"size": "L"})

    cart = await service.remove_item(context, "TEE", selected_options={"SIZE": "M"})

    assert [item.selected_options for item in cart.items] == [{"size": "L"}]


async def test_merge_moves_anonymous_lines_to_the_user_cart():
    service = _service()
    anonymous = (await service.add_item(CartContext(), "TEE", 4)).cart.id
    await service.add_item(CartContext(cart_id=anonymous), "MUG", 1)
    await service.add_item(CartContext(user_id="user-1"), "TEE", 3)

    merged = await service.merge_carts("user-1", anonymous)

    assert merged.user_id == "user-1"
    assert {item.sku: item.qty for item in merged.items} == {"TEE": 5, "MUG": 1}
    assert await service._store.get_cart(anonymous) is None


async def test_checkout_signs_a_priced_snapshot_that_orders_accepts(orders_db):
    service = _service()
    cart_id = (await service.add_item(CartContext(user_id="user-1"), "TEE", 2)).cart.id
    await service.add_item(CartContext(user_id="user-1"), "MUG", 1)

    result = await service.checkout(CartContext(user_id="user-1"))

    snapshot = result.snapshot
    assert snapshot["cartId"] == cart_id
    assert snapshot["userId"] == "user-1"
    assert snapshot["totals"] == {
        "itemCount": 2,
        "totalQuantity": 3,
        "subtotalCents": 3800,
        "currency": "USD",
    }
    assert verify_document(snapshot, SNAPSHOT_SECRET)
    assert result.cart.items == []
    assert result.cart.status == "checked_out"
    assert result.cart.pricing_snapshot.subtotal_cents == 3800

    placed = await OrderService(orders_db, snapshot_secret=SNAPSHOT_SECRET).create_order(
        snapshot, snapshot["snapshotId"]
    )
    assert placed.state == "created"


async def test_checkout_failures():
    service = _service(pricing=FakePricing({"TEE": 1500}))
    cart_id = (await service.add_item(CartContext(), "MUG", 1)).cart.id

    with pytest.raises(CartCheckoutError, match="Missing pricing"):
        await service.checkout(CartContext(cart_id=cart_id))

    unreachable = _service(pricing=FakePricing(fail=True))
    other = (await unreachable.add_item(CartContext(), "TEE", 1)).cart.id
    with pytest.raises(CartCheckoutError, match="refresh pricing"):
        await unreachable.checkout(CartContext(cart_id=other))

    empty = (await service.add_item(CartContext(), "TEE", 1)).cart.id
    await service.remove_item(CartContext(cart_id=empty), "TEE")
    with pytest.raises(CartCheckoutError, match="empty"):
        await service.checkout(CartContext(cart_id=empty))


async def test_cart_api_requires_idempotency_key(app):
    async with api_client(app) as client:
        response = await client.post("/api/cart/items", json={"sku": "TEE", "qty": 1})
    assert response.status_code == 400
    assert response.json()["code"] == "IDEMPOTENCY_KEY_REQUIRED"


async def test_cart_api_replays_an_anonymous_add(app):
    async with api_client(app) as client:
        first = await client.post(
            "/api/cart/items", json={"sku": "TEE", "qty": 1}, headers={"Idempotency-Key": "a-1"}
        )
        retry = await client.post(
            "/api/cart/items", json={"sku": "TEE", "qty": 1}, headers={"Idempotency-Key": "a-1"}
        )
        cart_id = first.headers["x-cart-id"]
        current = await client.get("/api/cart", headers={"x-cart-id": cart_id})

    assert first.status_code == 201
    assert first.headers["x-idempotent-replay"] == "false"
    assert retry.status_code == 201
    assert retry.headers["x-idempotent-replay"] == "true"
    assert retry.json() == first.json()
    assert current.json()["items"] == [
        {"sku": "TEE", "qty": 1, "variantId": None, "selectedOptions": None}
    ]
    assert current.headers["etag"] == f'"{current.json()["version"]}"'


async def test_cart_api_edit_and_checkout_flow(app, orders_client):
    async with api_client(app) as client:
        added = await client.post(
            "/api/cart/items", json={"sku": "TEE", "qty": 2}, headers={"Idempotency-Key": "k-1"}
        )
        cart = {"x-cart-id": added.headers["x-cart-id"]}
        await client.post(
            "/api/cart/items",
            json={"sku": "MUG", "qty": 1},
            headers={**cart, "Idempotency-Key": "k-2"},
        )
        patched = await client.patch(
            "/api/cart/items/tee", json={"delta": 1}, headers={**cart, "Idempotency-Key": "k-3"}
        )
        removed = await client.request(
            "DELETE", "/api/cart/items/MUG", headers={**cart, "Idempotency-Key": "k-4"}
        )
        too_many = await client.patch(
            "/api/cart/items/TEE", json={"qty": 9}, headers={**cart, "Idempotency-Key": "k-5"}
        )
        checkout = await client.post(
            "/api/cart/checkout", headers={**cart, "Idempotency-Key": "k-6"}
        )
        checkout_retry = await client.post(
            "/api/cart/checkout", headers={**cart, "Idempotency-Key": "k-6"}
        )
        after = await client.get("/api/cart", headers=cart)

    assert patched.json()["items"][0]["qty"] == 3
    assert [item["sku"] for item in removed.json()["items"]] == ["TEE"]
    assert too_many.status_code == 422
    assert checkout.status_code == 200
    body = checkout.json()
    assert body["orderId"] == "order-1"
    assert verify_document(body["snapshot"], SNAPSHOT_SECRET)
    assert body["snapshot"]["totals"]["subtotalCents"] == 4500
    assert checkout_retry.headers["x-idempotent-replay"] == "true"
    assert checkout_retry.json() == body
    assert len(orders_client.snapshots) == 1
    assert after.json()["status"] == "checked_out"
    assert after.json()["items"] == []


async def test_cart_api_merge_needs_user_and_cart(app):
    async with api_client(app) as client:
        anonymous = await client.post(
            "/api/cart/items", json={"sku": "MUG", "qty": 2}, headers={"Idempotency-Key": "m-1"}
        )
        cart_id = anonymous.headers["x-cart-id"]
        no_user = await client.post(
            "/api/cart/merge", headers={"x-cart-id": cart_id, "Idempotency-Key": "m-2"}
        )
        merged = await client.post(
            "/api/cart/merge",
            headers={"x-cart-id": cart_id, "x-user-id": "user-7", "Idempotency-Key": "m-3"},
        )
        mine = await client.get("/api/cart", headers={"x-user-id": "user-7"})

    assert no_user.status_code == 400
    assert merged.status_code == 200
    assert merged.json()["userId"] == "user-7"
    assert mine.json()["items"][0]["qty"] == 2


async def test_get_cart_without_context_is_a_bad_request(app):
    async with api_client(app) as client:
        response = await client.get("/api/cart")
    assert response.status_code == 400
