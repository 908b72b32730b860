"""Pydantic v2 request schemas for the inventory API."""
from __future__ import annotations

from pydantic import BaseModel, Field


class ReservationItem(BaseModel):
    sku: str = Field(..., min_length=1, max_length=128)
    qty: int


class ReserveRequest(BaseModel):
    order_id: str = Field(..., alias="orderId", min_length=1, max_length=64)
    items: list[ReservationItem] = Field(default_factory=list)
    ttl_seconds: int | None = Field(default=None, alias="ttlSeconds")


class ReleaseRequest(BaseModel):
    reason: str = Field(default="manual_release", max_length=255)


class AdjustmentRequest(BaseModel):
    sku: str = Field(..., min_length=1, max_length=128)
    delta: int
    reason: str = Field(..., min_length=1, max_length=255)
    reference_id: str | None = Field(default=None, alias="referenceId")
