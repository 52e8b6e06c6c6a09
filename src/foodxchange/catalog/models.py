"""
Catalog Domain Models

Products offered by vendors, with tiered volume pricing and an inventory
counter. Derived fields (SKU, slug, availability status) are computed by
explicit functions before a product is written, never by save hooks.

Fun fact: The first barcode-scanned product was a 10-pack of Wrigley's
chewing gum in 1974. SKUs predate barcodes by decades.
"""

import re
import secrets
import string
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from foodxchange.kernel.time import ensure_utc
from foodxchange.project.models import Currency

_SKU_ALPHABET = string.ascii_uppercase + string.digits


class CatalogCategory(str, Enum):
    GRAINS = "grains"
    DAIRY = "dairy"
    MEAT = "meat"
    SEAFOOD = "seafood"
    PRODUCE = "produce"
    PROCESSED = "processed"
    BEVERAGES = "beverages"
    SPICES = "spices"
    OILS = "oils"
    NUTS = "nuts"
    DRIED_FRUITS = "dried-fruits"
    SWEETENERS = "sweeteners"
    OTHER = "other"


class ProductStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    DISCONTINUED = "discontinued"


class AvailabilityStatus(str, Enum):
    """
    Stock availability

    IN_STOCK / LIMITED_STOCK / OUT_OF_STOCK are derived from the counter.
    PRE_ORDER and SEASONAL are set by the vendor and left alone by the ledger
    until stock is next mutated.
    """

    IN_STOCK = "in-stock"
    LIMITED_STOCK = "limited-stock"
    OUT_OF_STOCK = "out-of-stock"
    PRE_ORDER = "pre-order"
    SEASONAL = "seasonal"


class InventoryOperation(str, Enum):
    ADD = "add"
    SUBTRACT = "subtract"


class PriceTier(BaseModel):
    """A quantity range with its own unit price"""

    min_quantity: float = Field(..., ge=0)
    max_quantity: float | None = Field(default=None, ge=0)
    price: float = Field(..., ge=0)
    unit: str | None = None


class BasePrice(BaseModel):
    value: float = Field(..., ge=0)
    unit: str = Field(..., description="e.g. 'per kg'")


class ProductPricing(BaseModel):
    currency: Currency = Currency.USD
    base_price: BasePrice
    tiers: list[PriceTier] = Field(default_factory=list)
    negotiable: bool = True
    valid_until: datetime | None = None

    @field_validator("tiers")
    @classmethod
    def order_tiers(cls, v: list[PriceTier]) -> list[PriceTier]:
        """Keep tiers ordered by minimum quantity (stable for equal minimums)"""
        return sorted(v, key=lambda t: t.min_quantity)


class StockQuantity(BaseModel):
    available: float = 0
    unit: str = "kg"
    last_updated: datetime | None = None

    @field_validator("last_updated")
    @classmethod
    def normalise_timestamp(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v else None


class OrderLimit(BaseModel):
    value: float = Field(..., ge=0)
    unit: str


class Availability(BaseModel):
    status: AvailabilityStatus = AvailabilityStatus.IN_STOCK
    quantity: StockQuantity = Field(default_factory=StockQuantity)
    minimum_order: OrderLimit
    maximum_order: OrderLimit | None = None
    lead_time_days: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_order_limits(self) -> "Availability":
        if self.maximum_order and self.maximum_order.value < self.minimum_order.value:
            raise ValueError("Maximum order must not be below minimum order")
        return self


class ProductReview(BaseModel):
    """One buyer review; a reviewer reviews a product at most once"""

    reviewer_id: str
    rating: int = Field(..., ge=1, le=5)
    title: str | None = Field(default=None, max_length=200)
    comment: str | None = Field(default=None, max_length=2000)
    verified_purchase: bool = False
    created_at: datetime


class ProductRating(BaseModel):
    average: float = Field(default=0, ge=0, le=5)
    count: int = Field(default=0, ge=0)


class ProductMetrics(BaseModel):
    """
    Engagement counters

    ``views``, ``inquiries`` and ``orders`` are incremented in place by the
    store; ``rating`` is derived from the reviews whenever one is added.
    """

    views: int = Field(default=0, ge=0)
    inquiries: int = Field(default=0, ge=0)
    orders: int = Field(default=0, ge=0)
    rating: ProductRating = Field(default_factory=ProductRating)


class Product(BaseModel):
    """Product aggregate"""

    id: str
    name: str = Field(..., min_length=1, max_length=200)
    slug: str
    sku: str
    description: str = Field(..., min_length=1, max_length=5000)
    category: CatalogCategory
    supplier_id: str
    origin_country: str = Field(..., min_length=2, max_length=3)
    pricing: ProductPricing
    availability: Availability
    tags: list[str] = Field(default_factory=list)
    status: ProductStatus = ProductStatus.DRAFT
    metrics: ProductMetrics = Field(default_factory=ProductMetrics)
    reviews: list[ProductReview] = Field(default_factory=list)
    is_active: bool = True
    deleted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    revision: int = 0

    @field_validator("category", mode="before")
    @classmethod
    def lower_category(cls, v: object) -> object:
        return v.lower() if isinstance(v, str) else v

    @field_validator("origin_country")
    @classmethod
    def upper_country(cls, v: str) -> str:
        return v.upper()

    @field_validator("sku")
    @classmethod
    def upper_sku(cls, v: str) -> str:
        return v.upper()

    @field_validator("tags")
    @classmethod
    def normalise_tags(cls, v: list[str]) -> list[str]:
        return [t.strip().lower() for t in v if t and t.strip()]

    @property
    def conversion_rate(self) -> float:
        return conversion_rate(self.metrics)

    def review_by(self, reviewer_id: str) -> ProductReview | None:
        return next((r for r in self.reviews if r.reviewer_id == reviewer_id), None)


def derive_sku(category: CatalogCategory | str) -> str:
    """``<first three letters of category>-<6 random base36 chars>``"""
    value = category.value if isinstance(category, CatalogCategory) else category
    prefix = value[:3].upper()
    suffix = "".join(secrets.choice(_SKU_ALPHABET) for _ in range(6))
    return f"{prefix}-{suffix}"


def derive_slug(name: str, taken: int = 0) -> str:
    """
    URL slug from a product name

    ``taken`` is the number of existing products already using the base slug;
    a numeric suffix keeps the result unique.
    """
    base = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "product"
    return f"{base}-{taken + 1}" if taken else base


def derive_rating(reviews: list[ProductReview]) -> ProductRating:
    """Average and count of the review ratings; zero for no reviews"""
    if not reviews:
        return ProductRating()
    return ProductRating(
        average=sum(r.rating for r in reviews) / len(reviews),
        count=len(reviews),
    )


def conversion_rate(metrics: ProductMetrics) -> float:
    """Orders per hundred views; 0 before the first view"""
    if metrics.views == 0:
        return 0.0
    return metrics.orders / metrics.views * 100
