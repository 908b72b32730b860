"""
Database idempotency records for HTTP mutations.

A (key, operation) row is claimed in the same transaction as the
mutation. The claim result is a typed value, not an exception:

- new:          this request owns the key, run the mutation
- replay:       a completed record exists, return its stored response
- in_progress:  another request holds the key, caller should retry later
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

import structlog
from sqlalchemy import JSON, DateTime, String, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from services.shared.database import insert_ignore, utcnow

logger = structlog.get_logger(__name__)

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"


class IdempotencyKeyMixin:
    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    operation: Mapped[str] = mapped_column(String(100), primary_key=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_PROCESSING)
    response_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


@dataclass(frozen=True)
class IdempotencyClaim:
    state: Literal["new", "replay", "in_progress"]
    response: dict[str, Any] | None = None

    @property
    def is_new(self) -> bool:
        return self.state == "new"


async def claim_idempotency_key(
    session: AsyncSession, model: type, key: str, operation: str
) -> IdempotencyClaim:
    now = utcnow()
    inserted = await insert_ignore(
        session,
        model,
        {
            "key": key,
            "operation": operation,
            "status": STATUS_PROCESSING,
            "created_at": now,
            "updated_at": now,
        },
        ["key", "operation"],
    )
    if inserted:
        return IdempotencyClaim("new")

    result = await session.execute(
        select(model)
        .where(model.key == key, model.operation == operation)
        .execution_options(populate_existing=True)
    )
    existing = result.scalar_one()
    if existing.status == STATUS_COMPLETED:
        logger.info("idempotency_replay", key=key, operation=operation)
        return IdempotencyClaim("replay", existing.response_payload)

    logger.info("idempotency_in_progress", key=key, operation=operation)
    return IdempotencyClaim("in_progress")


async def complete_idempotency_key(
    session: AsyncSession,
    model: type,
    key: str,
    operation: str,
    response: dict[str, Any],
) -> None:
    await session.execute(
        update(model)
        .where(model.key == key, model.operation == operation)
        .values(status=STATUS_COMPLETED, response_payload=response, updated_at=utcnow())
    )
