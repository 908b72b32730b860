"""Cart service configuration."""
from __future__ import annotations

import os
from dataclasses import dataclass

from services.shared.config import (
    REDIS_URL,
    ServiceEndpoint,
    env_int,
    env_str,
    load_endpoint,
)
from services.shared.signing import DEFAULT_SNAPSHOT_SECRET

SERVICE_NAME = "cart"

DEFAULT_CART_TTL_SECONDS = 30 * 24 * 60 * 60
DEFAULT_IDEMPOTENCY_TTL_SECONDS = 24 * 60 * 60
DEFAULT_MAX_QTY_PER_ITEM = 25


@dataclass(frozen=True)
class CartConfig:
    redis_url: str
    default_currency: str
    cart_ttl_seconds: int
    user_cart_ttl_seconds: int
    idempotency_ttl_seconds: int
    max_qty_per_item: int
    snapshot_secret: str
    catalog: ServiceEndpoint | None
    orders: ServiceEndpoint | None


def _optional_endpoint(name: str) -> ServiceEndpoint | None:
    # Checkout runs without pricing or order forwarding when the URL is unset.
    if not os.getenv(f"{name.upper()}_SERVICE_URL", "").strip():
        return None
    return load_endpoint(name, "")


def load_config() -> CartConfig:
    cart_ttl = env_int("CART_TTL_SECONDS", DEFAULT_CART_TTL_SECONDS)
    return CartConfig(
        redis_url=env_str("CART_REDIS_URL", REDIS_URL),
        default_currency=env_str("CART_DEFAULT_CURRENCY", "USD").upper(),
        cart_ttl_seconds=cart_ttl,
        user_cart_ttl_seconds=env_int("CART_USER_TTL_SECONDS", cart_ttl * 2),
        idempotency_ttl_seconds=env_int(
            "CART_IDEMPOTENCY_TTL_SECONDS", DEFAULT_IDEMPOTENCY_TTL_SECONDS
        ),
        max_qty_per_item=env_int("CART_MAX_QTY_PER_ITEM", DEFAULT_MAX_QTY_PER_ITEM),
        snapshot_secret=env_str("CART_SNAPSHOT_SECRET", DEFAULT_SNAPSHOT_SECRET),
        catalog=_optional_endpoint("catalog"),
        orders=_optional_endpoint("orders"),
    )
