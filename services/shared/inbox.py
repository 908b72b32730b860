"""Processed-message gate for idempotent consumers."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from services.shared.database import insert_ignore, utcnow


class ProcessedMessageMixin:
    message_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    source: Mapped[str] = mapped_column(String(100), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)


async def claim_message(
    session: AsyncSession, model: type, message_id: str, source: str
) -> bool:
    """Insert the message id; False means it was already applied."""
    return await insert_ignore(
        session,
        model,
        {"message_id": message_id, "source": source, "processed_at": utcnow()},
        ["message_id"],
    )


async def record_message_result(
    session: AsyncSession, model: type, message_id: str, result: dict[str, Any]
) -> None:
    await session.execute(
        update(model).where(model.message_id == message_id).values(result=result)
    )


async def load_message_result(
    session: AsyncSession, model: type, message_id: str
) -> dict[str, Any] | None:
    result = await session.execute(
        select(model.result).where(model.message_id == message_id)
    )
    return result.scalar_one_or_none()
