"""Cart documents as stored in Redis."""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CartStatus = Literal["active", "checked_out"]


class _Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class CartItem(_Document):
    sku: str
    qty: int
    variant_id: str | None = None
    selected_options: dict[str, str] | None = None


class PricingSnapshot(_Document):
    subtotal_cents: int | None
    currency: str
    item_count: int
    total_quantity: int
    computed_at: str


class Cart(_Document):
    id: str
    user_id: str | None = None
    currency: str
    items: list[CartItem] = Field(default_factory=list)
    applied_coupon: str | None = None
    pricing_snapshot: PricingSnapshot | None = None
    status: CartStatus = "active"
    version: int = 0
    created_at: str
    updated_at: str

    def totals(self) -> dict[str, int]:
        return {
            "itemCount": len(self.items),
            "totalQuantity": sum(item.qty for item in self.items),
        }


def item_key(sku: str, variant_id: str | None, selected_options: dict[str, str] | None) -> str:
    """Identity of a cart line: SKU, variant and selected options."""
    variant = (variant_id or "").lower()
    options = "|".join(f"{k}:{v}" for k, v in sorted((selected_options or {}).items()))
    return f"{sku.lower()}|{variant}|{options}"


def normalize_sku(value: str) -> str:
    return value.strip().upper()


def normalize_optional(value: str | None) -> str | None:
    if not value:
        return None
    value = value.strip()
    return value or None


def normalize_options(options: dict[str, str] | None) -> dict[str, str] | None:
    if not options:
        return None
    cleaned = {
        key.strip().lower(): value.strip()
        for key, value in options.items()
        if key.strip() and value.strip()
    }
    return dict(sorted(cleaned.items())) or None
