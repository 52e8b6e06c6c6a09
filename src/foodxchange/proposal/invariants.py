"""
Proposal Invariants

The proposal state machine, edit permission and submission checks.
"""

from datetime import datetime

from foodxchange.kernel.errors import (
    InvalidTransition,
    MissingPriceValidity,
    PermissionDenied,
    PriceValidityLapsed,
)
from foodxchange.proposal.models import EDITABLE_STATUSES, Proposal, ProposalStatus

S = ProposalStatus

ALLOWED_TRANSITIONS: dict[ProposalStatus, frozenset[ProposalStatus]] = {
    S.DRAFT: frozenset({S.SUBMITTED, S.WITHDRAWN}),
    S.SUBMITTED: frozenset(
        {S.UNDER_REVIEW, S.CLARIFICATION_NEEDED, S.ACCEPTED, S.REJECTED, S.WITHDRAWN}
    ),
    S.UNDER_REVIEW: frozenset({S.REVISED, S.ACCEPTED, S.REJECTED, S.WITHDRAWN}),
    S.CLARIFICATION_NEEDED: frozenset({S.REVISED, S.ACCEPTED, S.REJECTED, S.WITHDRAWN}),
    S.REVISED: frozenset({S.SHORTLISTED, S.WITHDRAWN}),
    S.SHORTLISTED: frozenset({S.ACCEPTED, S.REJECTED, S.WITHDRAWN}),
    S.ACCEPTED: frozenset(),
    S.REJECTED: frozenset(),
    S.WITHDRAWN: frozenset(),
}


def can_transition(from_status: ProposalStatus, to_status: ProposalStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS[from_status]


def validate_transition(proposal: Proposal, to_status: ProposalStatus) -> None:
    """
    Raises:
        InvalidTransition: If the edge is not in the state machine
    """
    if not can_transition(proposal.status, to_status):
        raise InvalidTransition(
            "proposal", proposal.id, proposal.status.value, to_status.value
        )


def can_edit(proposal: Proposal, actor_id: str) -> bool:
    """The owning vendor may edit while the proposal is draft, submitted or awaiting clarification"""
    return proposal.vendor_id == actor_id and proposal.status in EDITABLE_STATUSES


def validate_vendor(proposal: Proposal, actor_id: str, action: str) -> None:
    """
    Raises:
        PermissionDenied: If the actor is not the proposal's vendor
    """
    if proposal.vendor_id != actor_id:
        raise PermissionDenied(actor_id, action, f"not the vendor of {proposal.id}")


def validate_price_validity(proposal: Proposal, now: datetime) -> datetime:
    """
    Price validity must exist and must not precede submission

    Returns:
        The validity date, which becomes the proposal's expiry

    Raises:
        MissingPriceValidity: If no validity date is set
        PriceValidityLapsed: If the validity date is already in the past
    """
    validity = proposal.pricing.price_validity
    if validity is None:
        raise MissingPriceValidity(proposal.id)
    if validity < now:
        raise PriceValidityLapsed(proposal.id, validity.isoformat())
    return validity
