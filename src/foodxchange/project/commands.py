"""
Project Commands

Commands carry the caller's input for project operations. Parsing a command
validates its shape; business rules are checked by the lifecycle functions.
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from foodxchange.kernel.time import ensure_utc
from foodxchange.project.models import (
    Budget,
    ProductCategory,
    Specifications,
    Visibility,
)


class CreateProject(BaseModel):
    """
    Create a project in draft

    The deadline must lie strictly in the future at creation time.
    """

    title: str = Field(..., min_length=10, max_length=200)
    description: str = Field(..., min_length=50, max_length=2000)
    category: ProductCategory
    subcategory: str | None = None
    specifications: Specifications
    budget: Budget = Field(default_factory=Budget)
    visibility: Visibility = Visibility.PUBLIC
    deadline: datetime
    tags: list[str] = Field(default_factory=list)

    @field_validator("deadline")
    @classmethod
    def normalise_deadline(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class InviteVendor(BaseModel):
    """Invite a vendor to bid (buyer only)"""

    vendor_id: str = Field(..., min_length=1)


class RespondToInvitation(BaseModel):
    """Accept or decline an invitation (invited vendor only)"""

    accept: bool


class CancelProject(BaseModel):
    """Cancel a project that has not reached a terminal state"""

    reason: str | None = Field(default=None, max_length=500)
