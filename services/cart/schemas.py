"""Pydantic v2 request schemas for the cart API."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

SelectedOptions = dict[str, str]


class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ItemTarget(_Schema):
    variant_id: str | None = Field(default=None, alias="variantId", min_length=1, max_length=128)
    selected_options: SelectedOptions | None = Field(default=None, alias="selectedOptions")


class AddItemRequest(ItemTarget):
    sku: str = Field(..., min_length=1, max_length=128)
    qty: int = Field(..., ge=1)
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class UpdateItemRequest(ItemTarget):
    qty: int | None = Field(default=None, ge=0)
    delta: int | None = None

    @model_validator(mode="after")
    def _qty_or_delta(self) -> UpdateItemRequest:
        if self.qty is None and self.delta is None:
            raise ValueError("qty or delta is required")
        return self
