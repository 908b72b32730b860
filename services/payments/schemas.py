"""Pydantic v2 request schemas for the payments API."""
from __future__ import annotations

from pydantic import BaseModel, Field


class AuthorizePaymentRequest(BaseModel):
    order_id: str = Field(..., alias="orderId", min_length=1, max_length=64)
    amount_cents: int = Field(..., alias="amountCents", ge=0)
    currency: str = Field(..., min_length=3, max_length=3)


class AuthorizeAndCaptureRequest(AuthorizePaymentRequest):
    correlation_id: str | None = Field(default=None, alias="correlationId")


class FailPaymentRequest(BaseModel):
    reason: str = Field(default="declined", min_length=1, max_length=255)
