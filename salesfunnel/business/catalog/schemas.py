from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


PriceSource = Literal["TIER", "BASE"]


class CatalogPricingTierInput(BaseModel):
    min_quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)


class CatalogPricingTierRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    min_quantity: int
    unit_price: Decimal


class CatalogProductCreate(BaseModel):
    sku: str = Field(min_length=1)
    name: str = Field(min_length=1)
    base_price: Decimal = Field(ge=0)
    floor_price: Decimal = Field(default=Decimal("0"), ge=0)
    is_active: bool = True
    tiers: list[CatalogPricingTierInput] = Field(default_factory=list)


class CatalogProductRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sku: str
    name: str
    base_price: Decimal
    floor_price: Decimal
    is_active: bool
    created_at: datetime
    tiers: list[CatalogPricingTierRead] = Field(default_factory=list)


class CatalogTiersReplace(BaseModel):
    tiers: list[CatalogPricingTierInput]


class CatalogPriceRead(BaseModel):
    product_id: UUID
    quantity: int
    unit_price: Decimal
    floor_price: Decimal
    source: PriceSource
