"""
Inventory Ledger

Mutates a product's available quantity and derives its availability status.
Status is always a function of the counter:

    available <= 0                  → out-of-stock
    0 < available < threshold (10)  → limited-stock
    otherwise                       → in-stock

Negative quantities (backorders) are allowed unless the policy forbids them.
"""

from datetime import datetime

from pydantic import BaseModel

from foodxchange.catalog.models import (
    AvailabilityStatus,
    InventoryOperation,
    Product,
)
from foodxchange.kernel.errors import ValidationFailure
from foodxchange.kernel.policy import MarketplacePolicy, default_policy


class InventoryUpdate(BaseModel):
    available: float
    status: AvailabilityStatus
    last_updated: datetime


def availability_status(
    available: float, policy: MarketplacePolicy = default_policy
) -> AvailabilityStatus:
    if available <= 0:
        return AvailabilityStatus.OUT_OF_STOCK
    if available < policy.limited_stock_threshold:
        return AvailabilityStatus.LIMITED_STOCK
    return AvailabilityStatus.IN_STOCK


def update_inventory(
    available: float,
    delta: float,
    operation: InventoryOperation | str,
    now: datetime,
    policy: MarketplacePolicy = default_policy,
) -> InventoryUpdate:
    """
    Apply one stock movement

    Raises:
        ValidationFailure: On a negative delta, or when the policy forbids
            overselling and the movement would go below zero
    """
    operation = InventoryOperation(operation)
    if delta < 0:
        raise ValidationFailure(f"Inventory delta must be non-negative, got {delta}")

    if operation == InventoryOperation.SUBTRACT:
        new_available = available - delta
    else:
        new_available = available + delta

    if new_available < 0 and not policy.allow_negative_inventory:
        raise ValidationFailure(
            f"Insufficient stock: {available} available, {delta} requested"
        )

    return InventoryUpdate(
        available=new_available,
        status=availability_status(new_available, policy),
        last_updated=now,
    )


def is_available(product: Product, quantity: float | None = None) -> bool:
    """Whether the product can be ordered, optionally in a given quantity"""
    if product.availability.status == AvailabilityStatus.OUT_OF_STOCK:
        return False
    if not quantity:
        return True
    return product.availability.quantity.available >= quantity
