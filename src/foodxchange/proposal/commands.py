"""
Proposal Commands
"""

from pydantic import BaseModel, Field

from foodxchange.proposal.models import Pricing, ProposalDelivery


class CreateProposal(BaseModel):
    """Start a draft proposal against a project (vendor only)"""

    project_id: str = Field(..., min_length=1)
    pricing: Pricing
    delivery: ProposalDelivery
    cover_letter: str = Field(..., min_length=100, max_length=2000)
    unique_selling_points: list[str] = Field(default_factory=list)


class UpdateProposal(BaseModel):
    """
    Edit a proposal while it is still editable

    Any pricing change is recorded in the negotiation history.
    """

    pricing: Pricing | None = None
    delivery: ProposalDelivery | None = None
    cover_letter: str | None = Field(default=None, min_length=100, max_length=2000)
    unique_selling_points: list[str] | None = None
    reason: str = Field(default="Price update", max_length=500)


class EvaluateProposal(BaseModel):
    """Buyer's sub-scores, each 0-100"""

    price: float = Field(..., ge=0, le=100)
    quality: float = Field(..., ge=0, le=100)
    delivery: float = Field(..., ge=0, le=100)
    vendor: float = Field(..., ge=0, le=100)
    notes: str | None = Field(default=None, max_length=2000)


class PostMessage(BaseModel):
    message: str = Field(..., min_length=1, max_length=5000)
