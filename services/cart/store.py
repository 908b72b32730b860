"""
Cart persistence.

``update_cart`` applies a mutation to the current document and bumps
``version`` on every successful write. The Redis store runs the
read-modify-write under WATCH/MULTI and retries a bounded number of
times before giving up with a concurrency error.
"""
from __future__ import annotations

import asyncio
import copy
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable

import redis.asyncio as aioredis
import structlog
from redis.exceptions import WatchError

from services.cart.errors import CartConcurrencyError
from services.cart.models import Cart
from services.shared.database import to_iso, utcnow

logger = structlog.get_logger(__name__)

Mutation = Callable[[Cart | None], Cart | None]

MAX_UPDATE_ATTEMPTS = 5


def _new_cart(*, currency: str, user_id: str | None, cart_id: str | None) -> Cart:
    now = to_iso(utcnow())
    return Cart(
        id=cart_id or str(uuid.uuid4()),
        user_id=user_id,
        currency=currency.upper(),
        status="active",
        version=1,
        created_at=now,
        updated_at=now,
    )


def _next_version(updated: Cart, current: Cart | None) -> Cart:
    base_version = current.version if current is not None else updated.version
    return updated.model_copy(
        update={"version": base_version + 1, "updated_at": to_iso(utcnow())}
    )


class CartStore(ABC):
    @abstractmethod
    async def create_cart(
        self, *, currency: str, user_id: str | None = None, cart_id: str | None = None
    ) -> Cart: ...

    @abstractmethod
    async def get_cart(self, cart_id: str) -> Cart | None: ...

    @abstractmethod
    async def delete_cart(self, cart_id: str) -> None: ...

    @abstractmethod
    async def get_cart_id_by_user(self, user_id: str) -> str | None: ...

    @abstractmethod
    async def set_user_cart(self, user_id: str, cart_id: str) -> None: ...

    @abstractmethod
    async def clear_user_cart(self, user_id: str) -> None: ...

    @abstractmethod
    async def update_cart(self, cart_id: str, mutate: Mutation) -> Cart | None:
        """Apply ``mutate``; a None result leaves the cart untouched."""


class InMemoryCartStore(CartStore):
    """Single-process store for tests and local development."""

    def __init__(self) -> None:
        self._carts: dict[str, Cart] = {}
        self._user_carts: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def create_cart(
        self, *, currency: str, user_id: str | None = None, cart_id: str | None = None
    ) -> Cart:
        cart = _new_cart(currency=currency, user_id=user_id, cart_id=cart_id)
        async with self._lock:
            self._carts[cart.id] = cart
            if user_id:
                self._user_carts[user_id] = cart.id
        return cart.model_copy(deep=True)

    async def get_cart(self, cart_id: str) -> Cart | None:
        cart = self._carts.get(cart_id)
        return cart.model_copy(deep=True) if cart else None

    async def delete_cart(self, cart_id: str) -> None:
        self._carts.pop(cart_id, None)

    async def get_cart_id_by_user(self, user_id: str) -> str | None:
        return self._user_carts.get(user_id)

    async def set_user_cart(self, user_id: str, cart_id: str) -> None:
        self._user_carts[user_id] = cart_id

    async def clear_user_cart(self, user_id: str) -> None:
        self._user_carts.pop(user_id, None)

    async def update_cart(self, cart_id: str, mutate: Mutation) -> Cart | None:
        async with self._lock:
            current = self._carts.get(cart_id)
            updated = mutate(copy.deepcopy(current))
            if updated is None:
                return None
            stored = _next_version(updated, current)
            self._carts[cart_id] = stored
            if stored.user_id:
                self._user_carts[stored.user_id] = stored.id
            return stored.model_copy(deep=True)


class RedisCartStore(CartStore):
    def __init__(
        self,
        redis: aioredis.Redis,
        *,
        cart_ttl_seconds: int,
        user_cart_ttl_seconds: int,
        prefix: str = "cart",
    ) -> None:
        self._redis = redis
        self._cart_ttl = cart_ttl_seconds
        self._user_ttl = user_cart_ttl_seconds
        self._prefix = prefix

    def _cart_key(self, cart_id: str) -> str:
        return f"{self._prefix}:{cart_id}"

    def _user_key(self, user_id: str) -> str:
        return f"{self._prefix}:user:{user_id}"

    async def create_cart(
        self, *, currency: str, user_id: str | None = None, cart_id: str | None = None
    ) -> Cart:
        cart = _new_cart(currency=currency, user_id=user_id, cart_id=cart_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(self._cart_key(cart.id), cart.model_dump_json(by_alias=True), ex=self._cart_ttl)
            if user_id:
                pipe.set(self._user_key(user_id), cart.id, ex=self._user_ttl)
            await pipe.execute()
        logger.info("cart_created", cart_id=cart.id, user_id=user_id)
        return cart

    async def get_cart(self, cart_id: str) -> Cart | None:
        raw = await self._redis.get(self._cart_key(cart_id))
        return Cart.model_validate_json(raw) if raw else None

    async def delete_cart(self, cart_id: str) -> None:
        await self._redis.delete(self._cart_key(cart_id))

    async def get_cart_id_by_user(self, user_id: str) -> str | None:
        return await self._redis.get(self._user_key(user_id))

    async def set_user_cart(self, user_id: str, cart_id: str) -> None:
        await self._redis.set(self._user_key(user_id), cart_id, ex=self._user_ttl)

    async def clear_user_cart(self, user_id: str) -> None:
        await self._redis.delete(self._user_key(user_id))

    async def update_cart(self, cart_id: str, mutate: Mutation) -> Cart | None:
        key = self._cart_key(cart_id)
        for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    current = Cart.model_validate_json(raw) if raw else None
                    updated = mutate(current)
                    if updated is None:
                        await pipe.unwatch()
                        return None
                    stored = _next_version(updated, current)
                    pipe.multi()
                    pipe.set(key, stored.model_dump_json(by_alias=True), ex=self._cart_ttl)
                    if stored.user_id:
                        pipe.set(self._user_key(stored.user_id), stored.id, ex=self._user_ttl)
                    await pipe.execute()
                    return stored
                except WatchError:
                    logger.info("cart_update_conflict", cart_id=cart_id, attempt=attempt)
                    continue
        raise CartConcurrencyError()
