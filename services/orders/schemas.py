"""Pydantic v2 schemas for the orders API."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SnapshotItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    sku: str = Field(..., min_length=1)
    qty: int = Field(..., gt=0)
    variant_id: str | None = Field(default=None, alias="variantId")
    selected_options: dict[str, str] | None = Field(default=None, alias="selectedOptions")
    unit_price_cents: int | None = Field(default=None, ge=0, alias="unitPriceCents")
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    title: str | None = None


class SnapshotTotals(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    item_count: int = Field(..., ge=0, alias="itemCount")
    total_quantity: int = Field(..., ge=0, alias="totalQuantity")
    subtotal_cents: int | None = Field(default=None, ge=0, alias="subtotalCents")
    currency: str = Field(..., min_length=3, max_length=3)


class CartSnapshot(BaseModel):
    """Shape check only; the signature is verified over the raw document."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    snapshot_id: str = Field(..., min_length=1, alias="snapshotId")
    cart_id: str = Field(..., min_length=1, alias="cartId")
    cart_version: int = Field(..., ge=0, alias="cartVersion")
    currency: str = Field(..., min_length=3, max_length=3)
    items: list[SnapshotItem] = Field(..., min_length=1)
    totals: SnapshotTotals
    created_at: str = Field(..., alias="createdAt")
    user_id: str | None = Field(default=None, alias="userId")
    signature: str = Field(..., min_length=64, max_length=64)
    pricing_snapshot: dict[str, Any] | None = Field(default=None, alias="pricingSnapshot")


class PlaceOrderRequest(BaseModel):
    cart_snapshot: dict[str, Any] = Field(..., alias="cartSnapshot")
    reservation_ttl_seconds: int | None = Field(default=None, alias="reservationTtlSeconds")


class CancelOrderRequest(BaseModel):
    reason: str | None = Field(default=None, min_length=1, max_length=255)
