"""
HTTP-level idempotency for mutations that are not backed by a SQL
transaction (the cart service keeps its state in Redis).

Stored responses are looked up by the most specific scope available
(user, then cart, then anonymous) and written under every applicable
scope. A short SET NX lock per (scope, key) rejects a concurrent
duplicate with 409 instead of executing it twice; the stored response is
still written after the mutation, so a crash in between can re-execute
on retry.
"""
from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog
import redis.asyncio as aioredis
from fastapi.responses import JSONResponse

from services.shared.errors import AlreadyProcessingError, BadRequestError

logger = structlog.get_logger(__name__)

REPLAY_HEADER = "x-idempotent-replay"
ANONYMOUS_SCOPE = "anonymous"
LOCK_TTL_SECONDS = 30


@dataclass(frozen=True)
class StoredResponse:
    status_code: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(
            {"statusCode": self.status_code, "body": self.body, "headers": self.headers}
        )

    @classmethod
    def from_json(cls, raw: str) -> "StoredResponse":
        data = json.loads(raw)
        return cls(
            status_code=int(data["statusCode"]),
            body=data.get("body"),
            headers=dict(data.get("headers") or {}),
        )

    def to_response(self, *, replay: bool) -> JSONResponse:
        response = JSONResponse(content=self.body, status_code=self.status_code)
        for name, value in self.headers.items():
            response.headers[name] = value
        response.headers[REPLAY_HEADER] = "true" if replay else "false"
        return response


class ResponseStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    @abstractmethod
    async def acquire(self, key: str, ttl_seconds: int) -> bool: ...

    @abstractmethod
    async def release(self, key: str) -> None: ...


class RedisResponseStore(ResponseStore):
    def __init__(self, redis: aioredis.Redis, prefix: str = "idem") -> None:
        self._redis = redis
        self._prefix = prefix

    async def get(self, key: str) -> str | None:
        return await self._redis.get(f"{self._prefix}:{key}")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._prefix}:{key}", ttl_seconds, value)

    async def acquire(self, key: str, ttl_seconds: int) -> bool:
        acquired = await self._redis.set(f"{self._prefix}:lock:{key}", "1", nx=True, ex=ttl_seconds)
        return bool(acquired)

    async def release(self, key: str) -> None:
        await self._redis.delete(f"{self._prefix}:lock:{key}")


class InMemoryResponseStore(ResponseStore):
    """Process-local store for tests and single-instance development."""

    def __init__(self) -> None:
        self._values: dict[str, tuple[str, float]] = {}
        self._locks: dict[str, float] = {}

    async def get(self, key: str) -> str | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= time.monotonic():
            self._values.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._values[key] = (value, time.monotonic() + ttl_seconds)

    async def acquire(self, key: str, ttl_seconds: int) -> bool:
        now = time.monotonic()
        expires_at = self._locks.get(key)
        if expires_at is not None and expires_at > now:
            return False
        self._locks[key] = now + ttl_seconds
        return True

    async def release(self, key: str) -> None:
        self._locks.pop(key, None)


def read_scopes(user_id: str | None, resource_id: str | None) -> list[str]:
    """Most specific first; anonymous only when there is no other context."""
    scopes: list[str] = []
    if user_id:
        scopes.append(f"user:{user_id}")
    if resource_id:
        scopes.append(f"cart:{resource_id}")
    if not scopes:
        scopes.append(ANONYMOUS_SCOPE)
    return scopes


def write_scopes(
    user_id: str | None, resource_id: str | None, *, had_context: bool
) -> list[str]:
    scopes: list[str] = []
    if user_id:
        scopes.append(f"user:{user_id}")
    if resource_id:
        scopes.append(f"cart:{resource_id}")
    if not had_context:
        scopes.append(ANONYMOUS_SCOPE)
    return scopes


Action = Callable[[], Awaitable[tuple[StoredResponse, Sequence[str]]]]


class IdempotentResponder:
    def __init__(self, store: ResponseStore, *, ttl_seconds: int, namespace: str) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._namespace = namespace

    def _key(self, scope: str, key: str) -> str:
        return f"{self._namespace}:{scope}:{key}"

    async def lookup(self, key: str, scopes: Sequence[str]) -> StoredResponse | None:
        for scope in scopes:
            raw = await self._store.get(self._key(scope, key))
            if raw is not None:
                return StoredResponse.from_json(raw)
        return None

    async def save(self, key: str, scopes: Sequence[str], response: StoredResponse) -> None:
        raw = response.to_json()
        for scope in dict.fromkeys(scopes):
            await self._store.set(self._key(scope, key), raw, self._ttl_seconds)

    async def execute(
        self,
        key: str | None,
        scopes: Sequence[str],
        action: Action,
    ) -> JSONResponse:
        """Replay a stored response or run ``action`` and store its result."""
        if not key:
            raise BadRequestError("Idempotency-Key header is required", code="IDEMPOTENCY_KEY_REQUIRED")

        stored = await self.lookup(key, scopes)
        if stored is not None:
            logger.info("http_idempotency_replay", key=key, scope=scopes[0])
            return stored.to_response(replay=True)

        lock_key = self._key(f"lock:{scopes[0]}", key)
        if not await self._store.acquire(lock_key, LOCK_TTL_SECONDS):
            raise AlreadyProcessingError(key)
        try:
            response, targets = await action()
            if 200 <= response.status_code < 300:
                await self.save(key, targets, response)
        finally:
            await self._store.release(lock_key)
        return response.to_response(replay=False)
