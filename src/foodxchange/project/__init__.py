"""
Project Module - Buyer sourcing requests and their lifecycle

A project moves draft → active → in-review → awarded → in-progress →
completed, can be cancelled while open, and is expired by the deadline
sweep. Visibility decides who may see it and who may bid.

Fun fact: Reverse auctions, where sellers bid prices down instead of buyers
bidding them up, became the standard for B2B sourcing in the late 1990s.
"""

from foodxchange.project.models import (
    Budget,
    Project,
    ProjectStatus,
    Visibility,
)

__all__ = [
    "Budget",
    "Project",
    "ProjectStatus",
    "Visibility",
]
