"""
Catalog Module - Vendor products, tiered pricing and the inventory ledger
"""

from foodxchange.catalog.models import (
    AvailabilityStatus,
    InventoryOperation,
    PriceTier,
    Product,
)

__all__ = [
    "AvailabilityStatus",
    "InventoryOperation",
    "PriceTier",
    "Product",
]
