"""
Test Helper Functions - Builders

Provides reusable builders for command payloads and a couple of shortcuts
that drive a project or proposal to a given lifecycle state through the
exchange façade.

Fun fact: The Builder pattern was formalized by the Gang of Four in 1994,
but test data builders were popularized by the growing programmer test
movement in the 2000s - we use them to keep tests readable and maintainable!
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from foodxchange.accounts.models import Actor
from foodxchange.exchange import Exchange
from foodxchange.project.models import Project
from foodxchange.proposal.models import Proposal

NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

COVER_LETTER = (
    "We are a family-owned mill with twenty years of export experience. "
    "Our wheat is stone-ground, certified organic and shipped within two weeks of award."
)


def project_command(**overrides: Any) -> dict[str, Any]:
    """
    Builder for CreateProject payloads

    Defaults describe a public wheat sourcing project with a deadline ten
    days after the fixed test time.

    Example:
        >>> project_command(visibility="invite-only", budget={"min": 100, "max": 500})
    """
    command: dict[str, Any] = {
        "title": "Organic wheat for Q3 production",
        "description": (
            "We need organic durum wheat for pasta production, delivered "
            "to our Rotterdam plant in two shipments."
        ),
        "category": "grains",
        "specifications": {
            "quantity": {"value": 500, "unit": "ton"},
            "quality": {"certifications": ["Organic"]},
            "delivery": {"location": "Rotterdam", "incoterms": "CIF"},
        },
        "budget": {"min": 100000, "max": 150000, "currency": "EUR"},
        "visibility": "public",
        "deadline": NOW + timedelta(days=10),
        "tags": ["Wheat", " organic "],
    }
    command.update(overrides)
    return command


def proposal_command(
    project_id: str,
    total_price: float = 120000,
    unit_price: float = 240,
    price_validity: datetime | None = NOW + timedelta(days=30),
    **overrides: Any,
) -> dict[str, Any]:
    """
    Builder for CreateProposal payloads

    Args:
        project_id: Project to bid on
        total_price: Total bid (ranking tie-breaker)
        unit_price: Price per unit
        price_validity: Prices valid until (None for a proposal that cannot
            be submitted)
    """
    command: dict[str, Any] = {
        "project_id": project_id,
        "pricing": {
            "unit_price": unit_price,
            "total_price": total_price,
            "currency": "EUR",
            "price_validity": price_validity,
        },
        "delivery": {"lead_time_days": 14, "shipping_method": "sea"},
        "cover_letter": COVER_LETTER,
    }
    command.update(overrides)
    return command


def product_command(**overrides: Any) -> dict[str, Any]:
    """Builder for CreateProduct payloads with a three-tier price list"""
    command: dict[str, Any] = {
        "name": "Durum Wheat",
        "description": "Stone-ground organic durum wheat",
        "category": "grains",
        "origin_country": "it",
        "pricing": {
            "currency": "EUR",
            "base_price": {"value": 12, "unit": "per kg"},
            "tiers": [
                {"min_quantity": 500, "price": 6},
                {"min_quantity": 1, "price": 10},
                {"min_quantity": 100, "price": 8},
            ],
        },
        "availability": {
            "quantity": {"available": 50, "unit": "kg"},
            "minimum_order": {"value": 1, "unit": "kg"},
        },
    }
    command.update(overrides)
    return command


def active_project(exchange: Exchange, buyer: Actor, **overrides: Any) -> Project:
    """Create and publish a project"""
    project = exchange.create_project(buyer, project_command(**overrides))
    return exchange.publish_project(buyer, project.id)


def submitted_proposal(
    exchange: Exchange, vendor: Actor, project_id: str, **overrides: Any
) -> Proposal:
    """Create and submit a proposal"""
    proposal = exchange.create_proposal(vendor, proposal_command(project_id, **overrides))
    return exchange.submit_proposal(vendor, proposal.id)
