"""
Cart API.

Carts live in Redis; mutations are made idempotent with stored HTTP
responses rather than database records.
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import uvicorn
from fastapi import FastAPI

from services.cart.clients import (
    CatalogPricingClient,
    HttpOrdersClient,
    OrdersClient,
    PricingProvider,
)
from services.cart.config import CartConfig, SERVICE_NAME, load_config
from services.cart.routes import build_router
from services.cart.service import CartService
from services.cart.store import CartStore, RedisCartStore
from services.shared.app import create_service_app
from services.shared.auth import Authenticator, load_authenticator
from services.shared.config import internal_service_secret
from services.shared.http_client import ServiceClient
from services.shared.http_idempotency import IdempotentResponder, RedisResponseStore
from services.shared.redis_client import close_redis, get_redis


def create_app(
    config: CartConfig | None = None,
    *,
    store: CartStore | None = None,
    responder: IdempotentResponder | None = None,
    pricing: PricingProvider | None = None,
    orders: OrdersClient | None = None,
    auth: Authenticator | None = None,
) -> FastAPI:
    config = config or load_config()
    on_shutdown: list[Callable[[], Awaitable[Any]]] = []

    if store is None or responder is None:
        redis = get_redis(config.redis_url)
        on_shutdown.append(close_redis)
        store = store or RedisCartStore(
            redis,
            cart_ttl_seconds=config.cart_ttl_seconds,
            user_cart_ttl_seconds=config.user_cart_ttl_seconds,
        )
        responder = responder or IdempotentResponder(
            RedisResponseStore(redis, prefix="cart:idem"),
            ttl_seconds=config.idempotency_ttl_seconds,
            namespace=SERVICE_NAME,
        )
    if pricing is None and config.catalog is not None:
        catalog_client = CatalogPricingClient(ServiceClient(config.catalog))
        on_shutdown.append(catalog_client.aclose)
        pricing = catalog_client
    if orders is None and config.orders is not None:
        orders_client = HttpOrdersClient(ServiceClient(config.orders))
        on_shutdown.append(orders_client.aclose)
        orders = orders_client

    service = CartService(
        store,
        default_currency=config.default_currency,
        max_qty_per_item=config.max_qty_per_item,
        snapshot_secret=config.snapshot_secret,
        pricing=pricing,
        orders=orders,
    )
    return create_service_app(
        name=SERVICE_NAME,
        title="Cart Service",
        routers=[build_router(service, responder, auth or load_authenticator())],
        internal_secret=internal_service_secret(),
        on_shutdown=on_shutdown,
    )


app = create_app()

if __name__ == "__main__":
    uvicorn.run("services.cart.main:app", host="0.0.0.0", port=8000, reload=False)
