"""
Tests for the tiered pricing resolver

Fun fact: Volume discounts are older than money - Babylonian grain contracts
on clay tablets already priced large lots lower per measure.
"""

import pytest

from foodxchange.catalog.models import PriceTier, Product
from foodxchange.catalog.pricing import (
    price_for_quantity,
    price_quote,
    qualifying_tiers,
    select_tier,
)
from foodxchange.kernel.errors import ValidationFailure
from tests.helpers import NOW, product_command

STANDARD_TIERS = [
    PriceTier(min_quantity=1, price=10),
    PriceTier(min_quantity=100, price=8),
    PriceTier(min_quantity=500, price=6),
]


def make_product(**overrides) -> Product:
    return Product.model_validate(
        {
            "id": "prod-1",
            "slug": "durum-wheat",
            "sku": "gra-abc123",
            "supplier_id": "vendor-1",
            "created_at": NOW,
            "updated_at": NOW,
            **product_command(**overrides),
        }
    )


@pytest.mark.parametrize(
    "quantity,expected",
    [
        (1, 10),
        (99, 10),
        (100, 8),
        (150, 8),
        (499.5, 8),
        (500, 6),
        (10_000, 6),
    ],
)
def test_price_for_quantity_standard_tiers(quantity, expected):
    assert price_for_quantity(STANDARD_TIERS, 12, quantity) == expected


def test_no_qualifying_tier_falls_back_to_base():
    assert price_for_quantity(STANDARD_TIERS, 12, 0.5) == 12
    assert price_for_quantity([], 12, 1000) == 12


def test_gap_between_tiers_uses_base_price():
    tiers = [
        PriceTier(min_quantity=1, max_quantity=50, price=10),
        PriceTier(min_quantity=100, price=8),
    ]

    assert price_for_quantity(tiers, 12, 75) == 12


def test_overlapping_tiers_highest_minimum_wins():
    tiers = [
        PriceTier(min_quantity=1, max_quantity=1000, price=10),
        PriceTier(min_quantity=200, max_quantity=300, price=7),
    ]

    assert price_for_quantity(tiers, 12, 250) == 7
    assert price_for_quantity(tiers, 12, 301) == 10


def test_equal_minimums_keep_input_order():
    tiers = [
        PriceTier(min_quantity=100, price=8),
        PriceTier(min_quantity=100, price=7),
    ]

    assert select_tier(tiers, 150).price == 8


def test_max_quantity_is_inclusive():
    tiers = [PriceTier(min_quantity=1, max_quantity=100, price=9)]

    assert [t.price for t in qualifying_tiers(tiers, 100)] == [9]
    assert qualifying_tiers(tiers, 100.01) == []


def test_product_tiers_sorted_by_minimum():
    product = make_product()

    assert [t.min_quantity for t in product.pricing.tiers] == [1, 100, 500]


def test_price_quote_totals():
    quote = price_quote(make_product(), 150)

    assert quote.unit_price == 8
    assert quote.total_price == 1200
    assert quote.currency.value == "EUR"
    assert quote.tier.min_quantity == 100


def test_price_quote_rejects_non_positive_quantity():
    with pytest.raises(ValidationFailure):
        price_quote(make_product(), 0)
