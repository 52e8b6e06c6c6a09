"""
Proposal Lifecycle Manager

Pure transition functions over Proposal. Buyer-side operations (review,
shortlist, accept, reject, evaluate) trust the caller to have checked that
the actor owns the parent project; vendor-side operations check the vendor
themselves.
"""

from datetime import datetime
from typing import Any

from foodxchange.kernel.errors import InvalidTransition, PermissionDenied, ValidationFailure
from foodxchange.kernel.ids import generate_reference
from foodxchange.kernel.policy import MarketplacePolicy, default_policy
from foodxchange.proposal.commands import (
    CreateProposal,
    EvaluateProposal,
    UpdateProposal,
)
from foodxchange.proposal.evaluation import with_overall
from foodxchange.proposal.invariants import (
    can_edit,
    validate_price_validity,
    validate_transition,
    validate_vendor,
)
from foodxchange.proposal.models import (
    Evaluation,
    Message,
    NegotiationEntry,
    Proposal,
    ProposalStatus,
    Scores,
    SenderType,
)


def _transition(
    proposal: Proposal, to_status: ProposalStatus, now: datetime, **updates: Any
) -> Proposal:
    validate_transition(proposal, to_status)
    return proposal.model_copy(
        update={
            "status": to_status,
            "last_modified": now,
            "updated_at": now,
            **updates,
        }
    )


def create(command: CreateProposal, vendor_id: str, now: datetime) -> Proposal:
    """Build a new draft proposal"""
    return Proposal(
        id=generate_reference("PRP", now),
        vendor_id=vendor_id,
        created_at=now,
        updated_at=now,
        **command.model_dump(),
    )


def submit(proposal: Proposal, actor_id: str, now: datetime) -> Proposal:
    """
    Draft → submitted

    Stamps ``submitted_at`` and takes ``expires_at`` from the price validity.

    Raises:
        PermissionDenied: If the actor is not the vendor
        InvalidTransition: If the proposal is not a draft
        MissingPriceValidity: If pricing carries no validity date
        PriceValidityLapsed: If the validity date is already past
    """
    validate_vendor(proposal, actor_id, "submit proposal")
    if proposal.status != ProposalStatus.DRAFT:
        raise InvalidTransition(
            "proposal", proposal.id, proposal.status.value, ProposalStatus.SUBMITTED.value
        )
    validity = validate_price_validity(proposal, now)
    return _transition(
        proposal,
        ProposalStatus.SUBMITTED,
        now,
        submitted_at=proposal.submitted_at or now,
        expires_at=validity,
    )


def pricing_changes(before: Proposal, after_pricing: dict[str, Any]) -> dict[str, Any]:
    """Field-level diff of pricing: {field: {"from": old, "to": new}}"""
    old = before.pricing.model_dump(mode="json")
    return {
        field: {"from": old.get(field), "to": value}
        for field, value in after_pricing.items()
        if old.get(field) != value
    }


def record_change(
    proposal: Proposal, changes: dict[str, Any], now: datetime, reason: str = "Price update"
) -> Proposal:
    """Append one versioned negotiation entry (version = prior count + 1)"""
    entry = NegotiationEntry(
        version=len(proposal.negotiation_history) + 1,
        changes=changes,
        changed_at=now,
        reason=reason,
    )
    return proposal.model_copy(
        update={"negotiation_history": proposal.negotiation_history + (entry,)}
    )


def update(
    proposal: Proposal, command: UpdateProposal, actor_id: str, now: datetime
) -> Proposal:
    """
    Apply an edit from the vendor

    Raises:
        PermissionDenied: If the actor may not edit the proposal now
    """
    if not can_edit(proposal, actor_id):
        raise PermissionDenied(
            actor_id,
            "edit proposal",
            f"{proposal.id} is {proposal.status.value} or owned by another vendor",
        )

    updates: dict[str, Any] = {}
    if command.delivery is not None:
        updates["delivery"] = command.delivery
    if command.cover_letter is not None:
        updates["cover_letter"] = command.cover_letter
    if command.unique_selling_points is not None:
        updates["unique_selling_points"] = command.unique_selling_points

    changes: dict[str, Any] = {}
    if command.pricing is not None:
        changes = pricing_changes(proposal, command.pricing.model_dump(mode="json"))
        updates["pricing"] = command.pricing

    if not updates:
        return proposal

    updated = proposal.model_copy(
        update={**updates, "last_modified": now, "updated_at": now}
    )
    if changes:
        updated = record_change(updated, changes, now, command.reason)
    return updated


def start_review(proposal: Proposal, now: datetime) -> Proposal:
    """Submitted/revised → under-review"""
    return _transition(proposal, ProposalStatus.UNDER_REVIEW, now)


def request_clarification(proposal: Proposal, now: datetime) -> Proposal:
    return _transition(proposal, ProposalStatus.CLARIFICATION_NEEDED, now)


def revise(proposal: Proposal, actor_id: str, now: datetime) -> Proposal:
    """Vendor answers a clarification or review with a revision"""
    validate_vendor(proposal, actor_id, "revise proposal")
    return _transition(proposal, ProposalStatus.REVISED, now)


def shortlist(proposal: Proposal, now: datetime) -> Proposal:
    return _transition(proposal, ProposalStatus.SHORTLISTED, now)


def accept(proposal: Proposal, now: datetime) -> Proposal:
    """Irreversible; marks the proposal as the winner"""
    flags = proposal.flags.model_copy(update={"is_winner": True})
    return _transition(proposal, ProposalStatus.ACCEPTED, now, flags=flags)


def reject(proposal: Proposal, now: datetime) -> Proposal:
    """Irreversible"""
    return _transition(proposal, ProposalStatus.REJECTED, now)


def withdraw(proposal: Proposal, actor_id: str, now: datetime) -> Proposal:
    """Any non-terminal state → withdrawn (vendor only)"""
    validate_vendor(proposal, actor_id, "withdraw proposal")
    return _transition(proposal, ProposalStatus.WITHDRAWN, now)


def mark_viewed(proposal: Proposal, now: datetime) -> Proposal:
    """First buyer view only; later views leave the proposal untouched"""
    if proposal.flags.is_viewed:
        return proposal
    flags = proposal.flags.model_copy(update={"is_viewed": True, "viewed_at": now})
    return proposal.model_copy(update={"flags": flags, "updated_at": now})


def add_message(
    proposal: Proposal,
    sender_id: str,
    sender_type: SenderType,
    text: str,
    now: datetime,
) -> Proposal:
    if proposal.is_terminal and proposal.status != ProposalStatus.ACCEPTED:
        raise ValidationFailure(
            f"Proposal {proposal.id} is {proposal.status.value}; the thread is closed"
        )
    message = Message(
        sender_id=sender_id, sender_type=sender_type, message=text, sent_at=now
    )
    return proposal.model_copy(
        update={
            "messages": [*proposal.messages, message],
            "last_modified": now,
            "updated_at": now,
        }
    )


def evaluate(
    proposal: Proposal,
    command: EvaluateProposal,
    evaluator_id: str,
    now: datetime,
    policy: MarketplacePolicy = default_policy,
) -> Proposal:
    """Record the buyer's sub-scores with the derived overall score"""
    if proposal.status == ProposalStatus.DRAFT or proposal.is_terminal:
        raise InvalidTransition(
            "proposal", proposal.id, proposal.status.value, "evaluated"
        )
    scores = with_overall(
        Scores(
            price=command.price,
            quality=command.quality,
            delivery=command.delivery,
            vendor=command.vendor,
        ),
        policy,
    )
    evaluation = Evaluation(
        scores=scores,
        notes=command.notes,
        evaluated_by=evaluator_id,
        evaluated_at=now,
    )
    return proposal.model_copy(
        update={"evaluation": evaluation, "last_modified": now, "updated_at": now}
    )
