from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from services.catalog.config import CatalogConfig
from services.catalog.main import create_app
from services.catalog.models import OutboxEvent
from services.catalog.schemas import CreateProductRequest, QuoteItem, UpdateProductRequest
from services.catalog.service import CatalogService
from services.shared import events
from services.shared.database import to_iso, utcnow
from services.shared.errors import ConflictError
from tests.helpers import BROKER, FAST_WORKER, INTERNAL_SECRET, api_client, dev_auth

WRITER = {"x-user-id": "merchant", "x-user-id-roles": "catalog:write"}


def _product(sku: str = "TEE-RED-M", **overrides) -> dict:
    body = {
        "title": "Red Tee",
        "brand": "Acme",
        "status": "published",
        "categories": [{"id": "tops", "name": "Tops"}],
        "media": [{"url": "https://cdn.example.com/tee.png", "altText": "tee"}],
        "variants": [
            {
                "sku": sku,
                "attributes": {"color": "red", "size": "M"},
                "prices": [{"currency": "usd", "amountCents": 1999}],
            }
        ],
    }
    body.update(overrides)
    return body


@pytest.fixture
def catalog(catalog_db) -> CatalogService:
    return CatalogService(catalog_db)


@pytest.fixture
def app(catalog_db):
    config = CatalogConfig(
        database_url="unused", broker=BROKER, outbox=FAST_WORKER, internal_secret=INTERNAL_SECRET
    )
    return create_app(config, catalog_db, dev_auth())


async def _outbox(database) -> list[OutboxEvent]:
    async with database.session() as session:
        result = await session.execute(select(OutboxEvent).order_by(OutboxEvent.occurred_at))
        return list(result.scalars())


async def test_create_product_emits_one_created_event(catalog, catalog_db):
    result = await catalog.create_product(
        CreateProductRequest.model_validate(_product()), idempotency_key="key-1"
    )
    product_id = result.response["productId"]

    product = await catalog.get_product(product_id)
    assert product["title"] == "Red Tee"
    assert product["variants"][0]["sku"] == "TEE-RED-M"
    assert product["variants"][0]["prices"][0]["currency"] == "USD"

    [row] = await _outbox(catalog_db)
    assert row.type == events.CATALOG_PRODUCT_CREATED
    assert row.payload["product"]["id"] == product_id
    assert row.payload["categories"] == ["tops"]
    assert row.payload["prices"][0]["sku"] == "TEE-RED-M"


async def test_create_product_replays_for_the_same_key(catalog, catalog_db):
    data = CreateProductRequest.model_validate(_product())
    first = await catalog.create_product(data, idempotency_key="key-1")
    second = await catalog.create_product(data, idempotency_key="key-1")

    assert second.state == "replay"
    assert second.response == first.response
    assert len(await _outbox(catalog_db)) == 1


async def test_existing_sku_is_a_conflict(catalog):
    await catalog.create_product(CreateProductRequest.model_validate(_product()))
    with pytest.raises(ConflictError) as exc_info:
        await catalog.create_product(CreateProductRequest.model_validate(_product(title="Copy")))
    assert exc_info.value.code == "SKU_EXISTS"


async def test_update_product_emits_updated_fields(catalog, catalog_db):
    created = await catalog.create_product(CreateProductRequest.model_validate(_product()))
    product_id = created.response["productId"]

    result = await catalog.update_product(
        product_id, UpdateProductRequest.model_validate({"title": "Crimson Tee", "brand": None})
    )

    assert result.status == "updated"
    assert result.updated_fields == ("brand", "title")
    product = await catalog.get_product(product_id)
    assert (product["title"], product["brand"]) == ("Crimson Tee", None)
    last = (await _outbox(catalog_db))[-1]
    assert last.type == events.CATALOG_PRODUCT_UPDATED
    assert last.payload["updatedFields"] == ["brand", "title"]

    missing = await catalog.update_product("nope", UpdateProductRequest(title="x"))
    assert missing.status == "not_found"


def test_update_request_needs_a_field():
    with pytest.raises(ValueError):
        UpdateProductRequest.model_validate({})
    with pytest.raises(ValueError):
        UpdateProductRequest.model_validate({"title": None})


async def test_quote_uses_the_current_price(catalog):
    later = to_iso(utcnow() + timedelta(days=7))
    body = _product(
        variants=[
            {
                "sku": "MUG-1",
                "prices": [
                    {"currency": "USD", "amountCents": 1200},
                    {"currency": "USD", "amountCents": 1500, "effectiveFrom": later},
                    {"currency": "EUR", "amountCents": 1100},
                ],
            }
        ]
    )
    await catalog.create_product(CreateProductRequest.model_validate(body))

    usd = await catalog.quote_prices([QuoteItem(sku="mug-1", qty=2)], "USD")
    eur = await catalog.quote_prices([QuoteItem(sku="MUG-1")], "eur")
    missing = await catalog.quote_prices([QuoteItem(sku="NOPE")])

    assert usd[0]["sku"] == "mug-1"
    assert (usd[0]["unitPriceCents"], usd[0]["currency"]) == (1200, "USD")
    assert (eur[0]["unitPriceCents"], eur[0]["currency"]) == (1100, "EUR")
    assert missing == []


async def test_list_products_paginates_with_a_cursor(catalog):
    for index in range(3):
        await catalog.create_product(
            CreateProductRequest.model_validate(_product(sku=f"SKU-{index}", title=f"Tee {index}"))
        )

    first = await catalog.list_products(limit=2)
    second = await catalog.list_products(limit=2, cursor=first["nextCursor"])
    searched = await catalog.list_products(search="tee 1")

    assert len(first["items"]) == 2
    assert len(second["items"]) == 1
    assert "nextCursor" not in second
    seen = {item["id"] for item in first["items"] + second["items"]}
    assert len(seen) == 3
    assert [item["title"] for item in searched["items"]] == ["Tee 1"]


async def test_product_api_roles_and_replay(app):
    async with api_client(app) as client:
        anonymous = await client.post("/api/catalog/products", json=_product())
        customer = await client.post(
            "/api/catalog/products", json=_product(), headers={"x-user-id": "shopper"}
        )
        first = await client.post(
            "/api/catalog/products",
            json=_product(),
            headers={**WRITER, "Idempotency-Key": "create-1"},
        )
        second = await client.post(
            "/api/catalog/products",
            json=_product(),
            headers={**WRITER, "Idempotency-Key": "create-1"},
        )
        product_id = first.json()["productId"]
        patched = await client.patch(
            f"/api/catalog/products/{product_id}", json={"status": "archived"}, headers=WRITER
        )
        fetched = await client.get(f"/api/catalog/products/{product_id}")
        quote = await client.post(
            "/api/catalog/pricing/quote", json={"items": [{"sku": "TEE-RED-M", "qty": 1}]}
        )
        missing = await client.get("/api/catalog/products/does-not-exist")

    assert anonymous.status_code == 401
    assert customer.status_code == 403
    assert first.status_code == 201
    assert second.status_code == 200
    assert second.headers["x-idempotent-replay"] == "true"
    assert second.json() == first.json()
    assert patched.json() == {"productId": product_id, "updatedFields": ["status"]}
    assert fetched.json()["status"] == "archived"
    assert quote.json()["items"][0]["unitPriceCents"] == 1999
    assert missing.status_code == 404
