"""
Pricing Resolver

Resolves the unit price for a requested quantity from a tier set.

Tiers may overlap or leave gaps. Among the tiers a quantity qualifies for,
the one with the highest minimum quantity wins; equal minimums keep input
order. No qualifying tier means the base price applies.
"""

from collections.abc import Sequence

from pydantic import BaseModel

from foodxchange.catalog.models import PriceTier, Product
from foodxchange.kernel.errors import ValidationFailure
from foodxchange.project.models import Currency


class PriceQuote(BaseModel):
    product_id: str
    quantity: float
    unit_price: float
    total_price: float
    currency: Currency
    tier: PriceTier | None = None


def qualifying_tiers(tiers: Sequence[PriceTier], quantity: float) -> list[PriceTier]:
    """Tiers whose range contains the quantity, in input order"""
    return [
        tier
        for tier in tiers
        if quantity >= tier.min_quantity
        and (tier.max_quantity is None or quantity <= tier.max_quantity)
    ]


def select_tier(tiers: Sequence[PriceTier], quantity: float) -> PriceTier | None:
    """The qualifying tier with the largest minimum (first one on ties)"""
    matches = qualifying_tiers(tiers, quantity)
    if not matches:
        return None
    return max(matches, key=lambda tier: tier.min_quantity)


def price_for_quantity(
    tiers: Sequence[PriceTier], base_price: float, quantity: float
) -> float:
    """
    Unit price for a quantity

    Example:
        >>> tiers = [PriceTier(min_quantity=1, price=10),
        ...          PriceTier(min_quantity=100, price=8),
        ...          PriceTier(min_quantity=500, price=6)]
        >>> price_for_quantity(tiers, 12, 150)
        8.0
    """
    tier = select_tier(tiers, quantity)
    return tier.price if tier else base_price


def price_quote(product: Product, quantity: float) -> PriceQuote:
    """
    Quote a product for a quantity

    Raises:
        ValidationFailure: If the quantity is not positive
    """
    if quantity <= 0:
        raise ValidationFailure(f"Quantity must be positive, got {quantity}")
    tier = select_tier(product.pricing.tiers, quantity)
    unit_price = tier.price if tier else product.pricing.base_price.value
    return PriceQuote(
        product_id=product.id,
        quantity=quantity,
        unit_price=unit_price,
        total_price=round(unit_price * quantity, 2),
        currency=product.pricing.currency,
        tier=tier,
    )
