"""
Proposal Domain Models

A Proposal is one vendor's bid against one project: price, delivery terms,
a cover letter, the buyer's evaluation and the negotiation trail.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from foodxchange.kernel.time import ensure_utc
from foodxchange.project.models import Currency, Incoterm


class ProposalStatus(str, Enum):
    """
    Proposal lifecycle states

    Finite state machine:
    DRAFT → SUBMITTED → {UNDER_REVIEW, CLARIFICATION_NEEDED} → REVISED → SHORTLISTED
    SUBMITTED / UNDER_REVIEW / CLARIFICATION_NEEDED / SHORTLISTED → {ACCEPTED, REJECTED}
    WITHDRAWN is reachable from every non-terminal state (vendor only).
    """

    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under-review"
    CLARIFICATION_NEEDED = "clarification-needed"
    REVISED = "revised"
    SHORTLISTED = "shortlisted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class ShippingMethod(str, Enum):
    SEA = "sea"
    AIR = "air"
    LAND = "land"
    MULTIMODAL = "multimodal"


class SenderType(str, Enum):
    BUYER = "buyer"
    VENDOR = "vendor"


TERMINAL_STATUSES = frozenset(
    {ProposalStatus.ACCEPTED, ProposalStatus.REJECTED, ProposalStatus.WITHDRAWN}
)

# A buyer may accept or reject only from these
DECIDABLE_STATUSES = frozenset(
    {
        ProposalStatus.SUBMITTED,
        ProposalStatus.UNDER_REVIEW,
        ProposalStatus.SHORTLISTED,
        ProposalStatus.CLARIFICATION_NEEDED,
    }
)

EDITABLE_STATUSES = frozenset(
    {
        ProposalStatus.DRAFT,
        ProposalStatus.SUBMITTED,
        ProposalStatus.CLARIFICATION_NEEDED,
    }
)

# Statuses that free the (project, vendor) slot for a new proposal
RELEASED_STATUSES = frozenset({ProposalStatus.WITHDRAWN, ProposalStatus.REJECTED})

RANKABLE_STATUSES = frozenset({ProposalStatus.SUBMITTED, ProposalStatus.SHORTLISTED})


class PriceBreakdown(BaseModel):
    product: float | None = Field(default=None, ge=0)
    packaging: float | None = Field(default=None, ge=0)
    shipping: float | None = Field(default=None, ge=0)
    taxes: float | None = Field(default=None, ge=0)
    other: float | None = Field(default=None, ge=0)


class Discount(BaseModel):
    kind: str
    percentage: float | None = Field(default=None, ge=0, le=100)
    amount: float | None = Field(default=None, ge=0)
    condition: str | None = None


class Pricing(BaseModel):
    unit_price: float = Field(..., ge=0)
    total_price: float = Field(..., ge=0)
    currency: Currency = Currency.USD
    price_breakdown: PriceBreakdown | None = None
    discounts: list[Discount] = Field(default_factory=list)
    price_validity: datetime | None = None
    payment_terms: str | None = None

    @field_validator("price_validity")
    @classmethod
    def normalise_validity(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v else None


class ProposalDelivery(BaseModel):
    lead_time_days: int = Field(..., ge=1, description="Days from award to delivery")
    shipping_method: ShippingMethod | None = None
    incoterms: Incoterm | None = None
    delivery_terms: str | None = None
    tracking_available: bool = False


class Scores(BaseModel):
    """Buyer sub-scores, each 0-100; overall is derived"""

    price: float = Field(..., ge=0, le=100)
    quality: float = Field(..., ge=0, le=100)
    delivery: float = Field(..., ge=0, le=100)
    vendor: float = Field(..., ge=0, le=100)
    overall: int | None = Field(default=None, ge=0, le=100)


class Evaluation(BaseModel):
    scores: Scores
    notes: str | None = None
    evaluated_by: str
    evaluated_at: datetime


class Message(BaseModel):
    sender_id: str
    sender_type: SenderType
    message: str = Field(..., min_length=1, max_length=5000)
    sent_at: datetime
    is_read: bool = False


class NegotiationEntry(BaseModel):
    """One pricing revision; versions start at 1 and only grow"""

    version: int = Field(..., ge=1)
    changes: dict[str, Any]
    changed_at: datetime
    reason: str

    model_config = {"frozen": True}


class ProposalFlags(BaseModel):
    is_winner: bool = False
    is_viewed: bool = False
    viewed_at: datetime | None = None


class Proposal(BaseModel):
    """
    Proposal aggregate

    Belongs to exactly one project and one vendor. Like projects, lifecycle
    operations return an updated copy.
    """

    id: str = Field(..., description="Human-legible reference, e.g. PRP-1736942400000-7QX2M")
    project_id: str
    vendor_id: str
    pricing: Pricing
    delivery: ProposalDelivery
    cover_letter: str = Field(..., min_length=100, max_length=2000)
    unique_selling_points: list[str] = Field(default_factory=list)
    status: ProposalStatus = ProposalStatus.DRAFT
    messages: list[Message] = Field(default_factory=list)
    evaluation: Evaluation | None = None
    negotiation_history: tuple[NegotiationEntry, ...] = ()
    flags: ProposalFlags = Field(default_factory=ProposalFlags)
    submitted_at: datetime | None = None
    last_modified: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    revision: int = 0

    @field_validator("submitted_at", "last_modified", "expires_at", "created_at", "updated_at")
    @classmethod
    def normalise_timestamps(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v else None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def overall_score(self) -> int:
        """Overall evaluation score, 0 when not yet evaluated"""
        if self.evaluation is None or self.evaluation.scores.overall is None:
            return 0
        return self.evaluation.scores.overall

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    def days_until_expiry(self, now: datetime) -> int | None:
        if self.expires_at is None:
            return None
        return math.ceil((self.expires_at - now).total_seconds() / 86400)


def proposal_unique_key(doc: dict[str, Any]) -> str | None:
    """
    Entity-store unique key for a proposal document

    One live proposal per (project, vendor); withdrawn and rejected proposals
    release the key.
    """
    if doc.get("status") in {s.value for s in RELEASED_STATUSES}:
        return None
    return f"{doc['project_id']}:{doc['vendor_id']}"
