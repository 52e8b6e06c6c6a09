"""
Accounts

Authentication happens upstream; the lifecycle engine only ever sees an
already-resolved Actor (user id + role). Company profiles are kept so the
suppliers search index has something to project.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class UserRole(str, Enum):
    BUYER = "buyer"
    VENDOR = "vendor"
    ADMIN = "admin"


class Actor(BaseModel):
    """The caller of an operation, as resolved by the auth layer"""

    user_id: str = Field(..., min_length=1)
    role: UserRole

    model_config = {"frozen": True}


class CompanyProfile(BaseModel):
    """A buyer's or vendor's company profile"""

    id: str = Field(..., description="Same as the owning user id")
    company_name: str = Field(..., min_length=1, max_length=200)
    country: str = Field(..., min_length=2, max_length=3)
    role: UserRole
    is_verified: bool = False
    email: str | None = None
    created_at: datetime
    updated_at: datetime
    revision: int = 0

    @field_validator("country")
    @classmethod
    def upper_country(cls, v: str) -> str:
        return v.upper()
