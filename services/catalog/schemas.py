"""Pydantic v2 request schemas for the catalog API."""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator, model_validator

AttributeValue = str | int | float | bool | None


class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PriceInput(_Schema):
    currency: str = Field(..., min_length=3, max_length=3)
    amount_cents: int = Field(..., alias="amountCents", ge=0)
    effective_from: datetime | None = Field(default=None, alias="effectiveFrom")

    @field_validator("currency", mode="before")
    @classmethod
    def _upper_currency(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value


class VariantInput(_Schema):
    sku: str = Field(..., min_length=1, max_length=128)
    status: Literal["active", "discontinued"] = "active"
    attributes: dict[str, AttributeValue] = Field(default_factory=dict)
    prices: list[PriceInput] = Field(..., min_length=1)

    @field_validator("sku")
    @classmethod
    def _strip_sku(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("sku must not be blank")
        return value


class MediaInput(_Schema):
    url: HttpUrl
    sort_order: int | None = Field(default=None, alias="sortOrder", ge=0)
    alt_text: str | None = Field(default=None, alias="altText")


class CategoryInput(_Schema):
    id: str = Field(..., min_length=1, max_length=64)
    name: str | None = Field(default=None, min_length=1)


class CreateProductRequest(_Schema):
    title: str = Field(..., min_length=1)
    description: str | None = None
    brand: str | None = None
    status: Literal["draft", "published", "archived"] = "draft"
    media: list[MediaInput] = Field(default_factory=list)
    categories: list[CategoryInput] = Field(default_factory=list)
    variants: list[VariantInput] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _unique_skus(self) -> CreateProductRequest:
        skus = [variant.sku for variant in self.variants]
        if len(set(skus)) != len(skus):
            raise ValueError("variant SKUs must be unique")
        return self


class UpdateProductRequest(_Schema):
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    brand: str | None = None
    status: Literal["draft", "published", "archived"] | None = None

    @model_validator(mode="after")
    def _at_least_one_field(self) -> UpdateProductRequest:
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        for name in ("title", "status"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class QuoteItem(_Schema):
    sku: str = Field(..., min_length=1)
    qty: int = Field(default=1, gt=0)
    variant_id: str | None = Field(default=None, alias="variantId")
    selected_options: dict[str, str] | None = Field(default=None, alias="selectedOptions")


class QuoteRequest(_Schema):
    items: list[QuoteItem] = Field(default_factory=list)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
