"""Volume tier pricing.

A tier table maps a minimum order quantity to a unit price. The applicable tier for a quantity
is the one with the largest ``min_quantity`` not above it; quantities below every tier fall back
to the smallest tier. An empty table prices at zero.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Union

from salesfunnel.business.errors import ValidationError


@dataclass(frozen=True, slots=True)
class PriceTier:
    min_quantity: int
    unit_price: Decimal


TierLike = Union[PriceTier, tuple[int, Decimal], tuple[int, int], tuple[int, float]]


def _as_tier(value: TierLike) -> PriceTier:
    if isinstance(value, PriceTier):
        return value
    min_quantity, unit_price = value
    return PriceTier(min_quantity=int(min_quantity), unit_price=Decimal(str(unit_price)))


def validate_quantity(quantity: int) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer", details={"quantity": quantity})
    return quantity


def price(tiers: Iterable[TierLike], quantity: int) -> Decimal:
    validate_quantity(quantity)
    table = [_as_tier(item) for item in tiers]
    if not table:
        return Decimal("0")

    applicable = [tier for tier in table if tier.min_quantity <= quantity]
    if applicable:
        return max(applicable, key=lambda tier: tier.min_quantity).unit_price
    return min(table, key=lambda tier: tier.min_quantity).unit_price


class TieredPricingEngine:
    def price(self, tiers: Iterable[TierLike], quantity: int) -> Decimal:
        return price(tiers, quantity)


tiered_pricing_engine = TieredPricingEngine()


@dataclass(frozen=True, slots=True)
class ProductPricing:
    """Read-only pricing facts for one product, as consumed by quoting."""

    product_id: uuid.UUID
    base_price: Decimal
    floor_price: Decimal
    tiers: tuple[PriceTier, ...] = ()

    def system_price(self, quantity: int) -> Decimal:
        # products without a tier table are sold at their list price
        if not self.tiers:
            validate_quantity(quantity)
            return self.base_price
        return price(self.tiers, quantity)

    def is_below_floor(self, unit_price: Decimal) -> bool:
        return unit_price < self.floor_price
