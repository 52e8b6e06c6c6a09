"""
Proposal Module - Vendor bids, evaluation and ranking
"""

from foodxchange.proposal.models import (
    Pricing,
    Proposal,
    ProposalDelivery,
    ProposalStatus,
    Scores,
)

__all__ = [
    "Pricing",
    "Proposal",
    "ProposalDelivery",
    "ProposalStatus",
    "Scores",
]
