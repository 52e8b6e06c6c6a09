"""
Project Domain Models

A Project is a buyer's sourcing request: what to buy, how much, where to
deliver, within what budget and by when vendors must bid.

Fun fact: Incoterms were first published by the International Chamber of
Commerce in 1936. "FOB" is older still - it shows up in 18th century British
maritime law.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from foodxchange.kernel.time import ensure_utc


class ProjectStatus(str, Enum):
    """
    Project lifecycle states

    Finite state machine:
    DRAFT → ACTIVE → IN_REVIEW → AWARDED → IN_PROGRESS → COMPLETED
              │   └──────────────↗
              └→ EXPIRED (deadline sweep)
    CANCELLED is reachable from every non-terminal state.
    """

    DRAFT = "draft"
    ACTIVE = "active"
    IN_REVIEW = "in-review"
    AWARDED = "awarded"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Visibility(str, Enum):
    """Who may see and bid on a project"""

    PUBLIC = "public"
    INVITE_ONLY = "invite-only"
    PRIVATE = "private"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class ProductCategory(str, Enum):
    GRAINS = "grains"
    DAIRY = "dairy"
    MEAT = "meat"
    SEAFOOD = "seafood"
    PRODUCE = "produce"
    PROCESSED = "processed"
    BEVERAGES = "beverages"
    SPICES = "spices"
    OILS = "oils"
    OTHER = "other"


class Unit(str, Enum):
    KG = "kg"
    TON = "ton"
    LBS = "lbs"
    UNITS = "units"
    CONTAINERS = "containers"
    PALLETS = "pallets"
    LITERS = "liters"
    GALLONS = "gallons"


class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    CNY = "CNY"
    JPY = "JPY"
    INR = "INR"


class Incoterm(str, Enum):
    EXW = "EXW"
    FCA = "FCA"
    FOB = "FOB"
    CFR = "CFR"
    CIF = "CIF"
    DDP = "DDP"
    DAP = "DAP"


class DeliveryFrequency(str, Enum):
    ONE_TIME = "one-time"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class PriceType(str, Enum):
    FIXED = "fixed"
    NEGOTIABLE = "negotiable"
    MARKET_PRICE = "market-price"


class Certification(str, Enum):
    ORGANIC = "Organic"
    FAIR_TRADE = "Fair Trade"
    HALAL = "Halal"
    KOSHER = "Kosher"
    NON_GMO = "Non-GMO"
    ISO = "ISO"
    HACCP = "HACCP"
    GMP = "GMP"


TERMINAL_STATUSES = frozenset(
    {ProjectStatus.COMPLETED, ProjectStatus.CANCELLED, ProjectStatus.EXPIRED}
)


class Quantity(BaseModel):
    value: float = Field(..., ge=0, description="Requested quantity")
    unit: Unit


class QualitySpec(BaseModel):
    grade: str | None = None
    certifications: list[Certification] = Field(default_factory=list)
    origin: str | None = None
    notes: str | None = None


class DeliveryTerms(BaseModel):
    """Where and when the goods are wanted"""

    location: str = Field(..., min_length=1)
    address: str | None = None
    incoterms: Incoterm | None = None
    preferred_date: datetime | None = None
    latest_date: datetime | None = None
    frequency: DeliveryFrequency | None = None

    @field_validator("preferred_date", "latest_date")
    @classmethod
    def normalise_dates(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v else None

    @model_validator(mode="after")
    def check_window(self) -> "DeliveryTerms":
        if self.preferred_date and self.latest_date and self.latest_date < self.preferred_date:
            raise ValueError("Latest delivery date must not precede the preferred date")
        return self


class Specifications(BaseModel):
    quantity: Quantity
    quality: QualitySpec = Field(default_factory=QualitySpec)
    delivery: DeliveryTerms


class Budget(BaseModel):
    """Budget range; either bound may be omitted"""

    min: float | None = Field(default=None, ge=0)
    max: float | None = Field(default=None, ge=0)
    currency: Currency = Currency.USD
    price_type: PriceType = PriceType.NEGOTIABLE

    @model_validator(mode="after")
    def check_range(self) -> "Budget":
        if self.min is not None and self.max is not None and self.max < self.min:
            raise ValueError(
                f"Maximum budget ({self.max}) must be greater than or equal to "
                f"minimum budget ({self.min})"
            )
        return self


class Invitation(BaseModel):
    vendor_id: str
    invited_at: datetime
    status: InvitationStatus = InvitationStatus.PENDING


class Award(BaseModel):
    """Winning proposal bookkeeping"""

    vendor_id: str
    proposal_id: str
    awarded_at: datetime
    contract_value: float = Field(..., ge=0)


class Analytics(BaseModel):
    view_count: int = Field(default=0, ge=0)
    unique_viewers: list[str] = Field(default_factory=list)


class HistoryEntry(BaseModel):
    """One audit trail record; never edited once appended"""

    action: str
    changed_by: str | None = None
    changed_at: datetime
    changes: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class Project(BaseModel):
    """
    Project aggregate

    Lifecycle operations never mutate an instance; they return an updated
    copy which the caller persists with a conditional write.
    """

    id: str = Field(..., description="Human-legible reference, e.g. PRJ-1736942400000-K3F9Q")
    title: str = Field(..., min_length=10, max_length=200)
    description: str = Field(..., min_length=50, max_length=2000)
    buyer_id: str
    category: ProductCategory
    subcategory: str | None = None
    specifications: Specifications
    budget: Budget = Field(default_factory=Budget)
    status: ProjectStatus = ProjectStatus.DRAFT
    visibility: Visibility = Visibility.PUBLIC
    invited_vendors: list[Invitation] = Field(default_factory=list)
    proposals: list[str] = Field(default_factory=list)
    awarded_to: Award | None = None
    deadline: datetime
    published_at: datetime | None = None
    completed_at: datetime | None = None
    tags: list[str] = Field(default_factory=list)
    analytics: Analytics = Field(default_factory=Analytics)
    history: tuple[HistoryEntry, ...] = ()
    created_at: datetime
    updated_at: datetime
    revision: int = 0

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        return v.strip()

    @field_validator("category", mode="before")
    @classmethod
    def lower_category(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @field_validator("tags")
    @classmethod
    def normalise_tags(cls, v: list[str]) -> list[str]:
        return [t.strip().lower() for t in v if t and t.strip()]

    @field_validator("deadline", "published_at", "completed_at", "created_at", "updated_at")
    @classmethod
    def normalise_timestamps(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v else None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def proposal_count(self) -> int:
        return len(self.proposals)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_expired(self, now: datetime) -> bool:
        return self.status == ProjectStatus.EXPIRED or self.deadline < now

    def days_until_deadline(self, now: datetime) -> int:
        """Whole days left, rounded up (negative once past)"""
        return math.ceil((self.deadline - now).total_seconds() / 86400)

    def invitation_for(self, vendor_id: str) -> Invitation | None:
        for invitation in self.invited_vendors:
            if invitation.vendor_id == vendor_id:
                return invitation
        return None
