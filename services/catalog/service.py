"""
Catalog writes and reads.

Product creation inserts the product, its variants, prices, media and
category links plus the ``catalog.product.created.v1`` outbox row in one
transaction. With an idempotency key the (key, operation) record is
claimed in that same transaction, so a retried create returns the first
``{productId}`` instead of creating a second product.
"""
from __future__ import annotations

import base64
import json
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

import structlog
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.catalog.models import (
    Category,
    IdempotencyKey,
    Media,
    OutboxEvent,
    Price,
    Product,
    ProductCategory,
    Variant,
)
from services.catalog.schemas import CreateProductRequest, QuoteItem, UpdateProductRequest
from services.shared import events
from services.shared.database import Database, insert_ignore, to_iso, utcnow
from services.shared.errors import ConflictError
from services.shared.idempotency import claim_idempotency_key, complete_idempotency_key
from services.shared.outbox import add_outbox_event

logger = structlog.get_logger(__name__)

CREATE_OPERATION = "catalog.products.create"
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class CreateProductResult:
    state: Literal["created", "replay", "in_progress"]
    response: dict[str, Any] | None = None


@dataclass(frozen=True)
class UpdateProductResult:
    status: Literal["updated", "not_found"]
    product_id: str
    updated_fields: tuple[str, ...] = ()


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _encode_cursor(product: Product) -> str:
    raw = json.dumps({"id": product.id, "createdAt": to_iso(product.created_at)})
    return base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")


def _decode_cursor(raw: str | None) -> tuple[str, datetime] | None:
    if not raw:
        return None
    try:
        padded = raw + "=" * (-len(raw) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode()))
        created_at = datetime.fromisoformat(payload["createdAt"].replace("Z", "+00:00"))
        return str(payload["id"]), created_at
    except (ValueError, KeyError, TypeError):
        return None


class CatalogService:
    def __init__(self, database: Database) -> None:
        self._database = database

    async def create_product(
        self,
        data: CreateProductRequest,
        *,
        idempotency_key: str | None = None,
        correlation_id: str | None = None,
        causation_id: str | None = None,
    ) -> CreateProductResult:
        async with self._database.transaction() as session:
            if idempotency_key:
                claim = await claim_idempotency_key(
                    session, IdempotencyKey, idempotency_key, CREATE_OPERATION
                )
                if claim.state == "replay":
                    return CreateProductResult("replay", claim.response)
                if claim.state == "in_progress":
                    return CreateProductResult("in_progress")

            skus = [variant.sku for variant in data.variants]
            taken = await session.execute(select(Variant.sku).where(Variant.sku.in_(skus)))
            existing = sorted(taken.scalars())
            if existing:
                raise ConflictError(
                    "SKU already exists", code="SKU_EXISTS", details={"skus": existing}
                )

            product_id = str(uuid.uuid4())
            now = utcnow()
            session.add(
                Product(
                    id=product_id,
                    title=data.title,
                    description=data.description,
                    brand=data.brand,
                    status=data.status,
                    created_at=now,
                    updated_at=now,
                )
            )
            await session.flush()

            category_ids: list[str] = []
            for category in data.categories:
                if category.id in category_ids:
                    continue
                category_ids.append(category.id)
                await insert_ignore(
                    session,
                    Category,
                    {
                        "id": category.id,
                        "name": category.name or category.id,
                        "created_at": now,
                        "updated_at": now,
                    },
                    ["id"],
                )
                await insert_ignore(
                    session,
                    ProductCategory,
                    {"product_id": product_id, "category_id": category.id, "created_at": now},
                    ["product_id", "category_id"],
                )

            media_payload = []
            for index, item in enumerate(data.media):
                record = Media(
                    id=str(uuid.uuid4()),
                    product_id=product_id,
                    url=str(item.url),
                    alt_text=item.alt_text,
                    sort_order=item.sort_order if item.sort_order is not None else index,
                    created_at=now,
                )
                session.add(record)
                media_payload.append(
                    {
                        "id": record.id,
                        "url": record.url,
                        "sortOrder": record.sort_order,
                        "altText": record.alt_text,
                    }
                )

            variant_payload = []
            price_payload = []
            for variant_input in data.variants:
                variant = Variant(
                    id=str(uuid.uuid4()),
                    product_id=product_id,
                    sku=variant_input.sku,
                    status=variant_input.status,
                    attributes=dict(variant_input.attributes),
                    created_at=now,
                    updated_at=now,
                )
                session.add(variant)
                variant_payload.append(
                    {
                        "id": variant.id,
                        "sku": variant.sku,
                        "status": variant.status,
                        "attributes": variant.attributes,
                    }
                )
                for price_input in variant_input.prices:
                    price = Price(
                        id=str(uuid.uuid4()),
                        variant_id=variant.id,
                        currency=price_input.currency,
                        amount_cents=price_input.amount_cents,
                        effective_from=_as_utc(price_input.effective_from) or now,
                        created_at=now,
                    )
                    session.add(price)
                    price_payload.append(
                        {
                            "id": price.id,
                            "variantId": variant.id,
                            "sku": variant.sku,
                            "currency": price.currency,
                            "amountCents": price.amount_cents,
                            "effectiveFrom": to_iso(price.effective_from),
                        }
                    )

            add_outbox_event(
                session,
                OutboxEvent,
                events.make_envelope(
                    events.CATALOG_PRODUCT_CREATED,
                    aggregate_id=product_id,
                    aggregate_type="product",
                    payload={
                        "product": {
                            "id": product_id,
                            "title": data.title,
                            "description": data.description,
                            "brand": data.brand,
                            "status": data.status,
                            "createdAt": to_iso(now),
                        },
                        "variants": variant_payload,
                        "prices": price_payload,
                        "categories": category_ids,
                        "media": media_payload,
                    },
                    correlation_id=correlation_id,
                    causation_id=causation_id,
                ),
            )

            response = {"productId": product_id}
            if idempotency_key:
                await complete_idempotency_key(
                    session, IdempotencyKey, idempotency_key, CREATE_OPERATION, response
                )

        logger.info("product_created", product_id=product_id, variants=len(variant_payload))
        return CreateProductResult("created", response)

    async def update_product(
        self,
        product_id: str,
        data: UpdateProductRequest,
        *,
        correlation_id: str | None = None,
    ) -> UpdateProductResult:
        changes = data.model_dump(include=data.model_fields_set)
        async with self._database.transaction() as session:
            product = await session.get(Product, product_id, with_for_update=True)
            if product is None:
                return UpdateProductResult("not_found", product_id)

            now = utcnow()
            for field, value in changes.items():
                setattr(product, field, value)
            product.updated_at = now
            updated_fields = tuple(sorted(changes))

            add_outbox_event(
                session,
                OutboxEvent,
                events.make_envelope(
                    events.CATALOG_PRODUCT_UPDATED,
                    aggregate_id=product_id,
                    aggregate_type="product",
                    payload={
                        "productId": product_id,
                        "updatedFields": list(updated_fields),
                        "updatedAt": to_iso(now),
                    },
                    correlation_id=correlation_id,
                ),
            )

        logger.info("product_updated", product_id=product_id, fields=list(updated_fields))
        return UpdateProductResult("updated", product_id, updated_fields)

    async def get_product(self, product_id: str) -> dict[str, Any] | None:
        if not product_id.strip():
            return None
        async with self._database.session() as session:
            product = await session.get(Product, product_id)
            if product is None:
                return None
            hydrated = await self._hydrate(session, [product])
            return hydrated[0]

    async def list_products(
        self,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
        status: str | None = None,
        search: str | None = None,
    ) -> dict[str, Any]:
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        stmt = select(Product).order_by(Product.created_at.desc(), Product.id.desc())
        if status:
            stmt = stmt.where(Product.status == status)
        term = (search or "").strip()
        if term:
            pattern = f"%{term}%"
            stmt = stmt.where(
                or_(
                    Product.title.ilike(pattern),
                    func.coalesce(Product.brand, "").ilike(pattern),
                    func.coalesce(Product.description, "").ilike(pattern),
                )
            )
        position = _decode_cursor(cursor)
        if position is not None:
            last_id, last_created = position
            stmt = stmt.where(
                or_(
                    Product.created_at < last_created,
                    and_(Product.created_at == last_created, Product.id < last_id),
                )
            )

        async with self._database.session() as session:
            result = await session.execute(stmt.limit(limit + 1))
            rows = list(result.scalars())
            page = rows[:limit]
            items = await self._hydrate(session, page)

        body: dict[str, Any] = {"items": items}
        if len(rows) > limit:
            body["nextCursor"] = _encode_cursor(page[-1])
        return body

    async def quote_prices(
        self, items: list[QuoteItem], currency: str | None = None
    ) -> list[dict[str, Any]]:
        """
        Current unit price per requested line.

        Prices effective in the future are ignored; the newest effective
        price wins, preferring ``currency`` when the variant has one in it.
        Lines whose variant or price cannot be found are left out.
        """
        if not items:
            return []
        preferred = currency.upper() if currency else None
        variant_ids = {item.variant_id for item in items if item.variant_id}
        skus = {item.sku.strip().upper() for item in items if not item.variant_id}

        conditions = []
        if variant_ids:
            conditions.append(Variant.id.in_(variant_ids))
        if skus:
            conditions.append(func.upper(Variant.sku).in_(skus))

        async with self._database.session() as session:
            result = await session.execute(
                select(Variant, Product.title)
                .join(Product, Product.id == Variant.product_id)
                .where(or_(*conditions))
            )
            rows = result.all()
            by_id = {variant.id: (variant, title) for variant, title in rows}
            by_sku = {variant.sku.upper(): (variant, title) for variant, title in rows}

            now = utcnow()
            price_rows = await session.execute(
                select(Price)
                .where(Price.variant_id.in_(list(by_id)), Price.effective_from <= now)
                .order_by(Price.effective_from.desc(), Price.created_at.desc())
            )
            current: dict[str, Price] = {}
            for price in price_rows.scalars():
                chosen = current.get(price.variant_id)
                if chosen is None:
                    current[price.variant_id] = price
                elif preferred and chosen.currency != preferred and price.currency == preferred:
                    current[price.variant_id] = price

        quotes = []
        for item in items:
            match = by_id.get(item.variant_id) if item.variant_id else by_sku.get(item.sku.strip().upper())
            if match is None:
                logger.info("quote_variant_missing", sku=item.sku, variant_id=item.variant_id)
                continue
            variant, title = match
            price = current.get(variant.id)
            if price is None:
                logger.info("quote_price_missing", sku=variant.sku)
                continue
            quote: dict[str, Any] = {
                "sku": item.sku,
                "variantId": variant.id,
                "unitPriceCents": price.amount_cents,
                "currency": price.currency,
                "title": title,
            }
            if item.selected_options:
                quote["selectedOptions"] = item.selected_options
            quotes.append(quote)
        return quotes

    async def _hydrate(
        self, session: AsyncSession, products: list[Product]
    ) -> list[dict[str, Any]]:
        if not products:
            return []
        ids = [product.id for product in products]

        variant_rows = (
            await session.execute(
                select(Variant).where(Variant.product_id.in_(ids)).order_by(Variant.created_at, Variant.sku)
            )
        ).scalars().all()
        variant_ids = [variant.id for variant in variant_rows]
        price_rows: list[Price] = []
        if variant_ids:
            price_rows = (
                await session.execute(
                    select(Price)
                    .where(Price.variant_id.in_(variant_ids))
                    .order_by(Price.effective_from.desc())
                )
            ).scalars().all()
        media_rows = (
            await session.execute(
                select(Media).where(Media.product_id.in_(ids)).order_by(Media.sort_order, Media.created_at)
            )
        ).scalars().all()
        category_rows = (
            await session.execute(
                select(ProductCategory.product_id, Category.id, Category.name)
                .join(Category, Category.id == ProductCategory.category_id)
                .where(ProductCategory.product_id.in_(ids))
                .order_by(Category.id)
            )
        ).all()

        prices_by_variant: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for price in price_rows:
            prices_by_variant[price.variant_id].append(
                {
                    "id": price.id,
                    "currency": price.currency,
                    "amountCents": price.amount_cents,
                    "effectiveFrom": to_iso(price.effective_from),
                }
            )
        variants_by_product: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for variant in variant_rows:
            variants_by_product[variant.product_id].append(
                {
                    "id": variant.id,
                    "sku": variant.sku,
                    "status": variant.status,
                    "attributes": variant.attributes,
                    "createdAt": to_iso(variant.created_at),
                    "updatedAt": to_iso(variant.updated_at),
                    "prices": prices_by_variant.get(variant.id, []),
                }
            )
        media_by_product: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for item in media_rows:
            media_by_product[item.product_id].append(
                {"id": item.id, "url": item.url, "altText": item.alt_text, "sortOrder": item.sort_order}
            )
        categories_by_product: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for product_id, category_id, name in category_rows:
            categories_by_product[product_id].append({"id": category_id, "name": name})

        return [
            {
                "id": product.id,
                "title": product.title,
                "description": product.description,
                "brand": product.brand,
                "status": product.status,
                "createdAt": to_iso(product.created_at),
                "updatedAt": to_iso(product.updated_at),
                "categories": categories_by_product.get(product.id, []),
                "media": media_by_product.get(product.id, []),
                "variants": variants_by_product.get(product.id, []),
            }
            for product in products
        ]
