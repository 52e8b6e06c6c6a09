"""
Account Commands
"""

from pydantic import BaseModel, Field


class UpsertProfile(BaseModel):
    """Create or replace the caller's company profile"""

    company_name: str = Field(..., min_length=1, max_length=200)
    country: str = Field(..., min_length=2, max_length=3)
    is_verified: bool = False
    email: str | None = None
