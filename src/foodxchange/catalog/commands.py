"""
Catalog Commands
"""

from pydantic import BaseModel, Field

from foodxchange.catalog.models import (
    Availability,
    CatalogCategory,
    InventoryOperation,
    ProductPricing,
    ProductStatus,
)


class CreateProduct(BaseModel):
    """List a product in the catalog (vendor only); SKU and slug are derived"""

    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    category: CatalogCategory
    origin_country: str = Field(..., min_length=2, max_length=3)
    pricing: ProductPricing
    availability: Availability
    tags: list[str] = Field(default_factory=list)
    status: ProductStatus = ProductStatus.ACTIVE


class AdjustInventory(BaseModel):
    """One stock movement; the delta is always non-negative"""

    delta: float = Field(..., ge=0)
    operation: InventoryOperation


class AddReview(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    title: str | None = Field(default=None, max_length=200)
    comment: str | None = Field(default=None, max_length=2000)
    verified_purchase: bool = False
