"""
Marketplace Policy - tunable parameters of the lifecycle engine

The MarketplacePolicy holds the thresholds the engine consults: when stock
counts as limited, how far ahead an expiring project is announced, and how a
buyer's sub-scores combine into an overall proposal score.

Fun fact: The 30/30/20/20 split between price, quality, delivery and vendor
mirrors the weighted-criteria scoring sheets procurement teams have used on
paper long before any of this was software.
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field, model_validator


class MarketplacePolicy(BaseModel):
    """
    Marketplace parameters

    Defaults reproduce the production marketplace's behaviour. Tests and
    deployments may override individual fields.
    """

    policy_version: str = Field(
        default="1.0",
        description="Policy version for tracking changes over time",
    )

    # Inventory
    limited_stock_threshold: int = Field(
        default=10,
        ge=1,
        description="Quantities below this (and above zero) are limited-stock",
    )

    allow_negative_inventory: bool = Field(
        default=True,
        description="Permit overselling into a negative (backorder) quantity",
    )

    # Deadlines
    expiring_soon_days: int = Field(
        default=3,
        ge=0,
        description="Active projects with a deadline this close get a reminder",
    )

    # Evaluation weights
    price_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    quality_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    delivery_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    vendor_weight: float = Field(default=0.2, ge=0.0, le=1.0)

    top_proposals_limit: int = Field(
        default=5,
        ge=1,
        description="Number of proposals returned by the top proposals query",
    )

    # Search index
    reindex_batch_size: int = Field(default=100, ge=1)
    projects_index: str = Field(default="foodxchange_projects")
    suppliers_index: str = Field(default="foodxchange_suppliers")

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "description": "Tunable parameters of the FoodXchange lifecycle engine"
        },
    }

    @model_validator(mode="after")
    def check_weights(self) -> "MarketplacePolicy":
        """Score weights must sum to 1 so the overall score stays within 0-100"""
        total = (
            self.price_weight
            + self.quality_weight
            + self.delivery_weight
            + self.vendor_weight
        )
        if abs(total - 1.0) > 1e-9:
            raise ValueError(f"Score weights must sum to 1.0, got {total}")
        return self


class ExchangeSettings(BaseModel):
    """Process-level settings read from the environment"""

    db_path: Path = Path("foodxchange.db")
    environment: str = "development"
    log_level: str = "INFO"
    json_logs: bool = False

    @classmethod
    def from_env(cls) -> "ExchangeSettings":
        environment = os.getenv("ENVIRONMENT", "development").lower()
        json_default = "true" if environment == "production" else "false"
        return cls(
            db_path=Path(os.getenv("FOODX_DB_PATH", "foodxchange.db")),
            environment=environment,
            log_level=os.getenv("FOODX_LOG_LEVEL", "INFO"),
            json_logs=os.getenv("FOODX_JSON_LOGS", json_default).lower()
            in ("1", "true", "yes"),
        )


# Default global policy instance
default_policy = MarketplacePolicy()
