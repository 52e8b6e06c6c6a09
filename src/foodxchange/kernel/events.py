"""
Change events emitted after a committed mutation

Every lifecycle operation that persists a change produces one ChangeEvent
carrying the before/after documents. The consistency synchronizer consumes
them to keep the search index and the notification stream in step with the
entity store.

Fun fact: Passing both the before and after image is the same trick database
change-data-capture tools use - consumers never have to re-read the source
to know what changed.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Closed set of change event types"""

    # Project
    PROJECT_CREATED = "ProjectCreated"
    PROJECT_PUBLISHED = "ProjectPublished"
    PROJECT_VIEWED = "ProjectViewed"
    PROJECT_REVIEW_STARTED = "ProjectReviewStarted"
    PROJECT_AWARDED = "ProjectAwarded"
    PROJECT_PROGRESS_STARTED = "ProjectProgressStarted"
    PROJECT_COMPLETED = "ProjectCompleted"
    PROJECT_CANCELLED = "ProjectCancelled"
    PROJECT_EXPIRED = "ProjectExpired"
    PROJECT_EXPIRING = "ProjectExpiring"
    VENDOR_INVITED = "VendorInvited"
    INVITATION_ANSWERED = "InvitationAnswered"

    # Proposal
    PROPOSAL_CREATED = "ProposalCreated"
    PROPOSAL_UPDATED = "ProposalUpdated"
    PROPOSAL_SUBMITTED = "ProposalSubmitted"
    PROPOSAL_STATUS_CHANGED = "ProposalStatusChanged"
    PROPOSAL_ACCEPTED = "ProposalAccepted"
    PROPOSAL_REJECTED = "ProposalRejected"
    PROPOSAL_WITHDRAWN = "ProposalWithdrawn"
    PROPOSAL_VIEWED = "ProposalViewed"
    PROPOSAL_EVALUATED = "ProposalEvaluated"
    PROPOSAL_MESSAGE_ADDED = "ProposalMessageAdded"

    # Accounts / catalog
    VENDOR_PROFILE_UPDATED = "VendorProfileUpdated"
    PRODUCT_CHANGED = "ProductChanged"
    PRODUCT_REVIEWED = "ProductReviewed"


class ChangeEvent(BaseModel):
    """
    A committed change to one entity

    ``before`` is None for creations. ``after`` is the document as written.
    ``payload`` carries routing details the entity itself does not hold
    (e.g. the buyer of the project a proposal belongs to).
    """

    event_id: str = Field(..., description="Unique event identifier (UUIDv7)")
    event_type: EventType
    entity_type: str = Field(..., description="'project', 'proposal', 'vendor', ...")
    entity_id: str
    occurred_at: datetime
    actor_id: str | None = Field(
        default=None,
        description="Actor who caused the change (None for scheduler sweeps)",
    )
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


def create_event(
    *,
    event_id: str,
    event_type: EventType,
    entity_type: str,
    entity_id: str,
    occurred_at: datetime,
    actor_id: str | None = None,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    payload: dict[str, Any] | None = None,
) -> ChangeEvent:
    """Factory for change events with named parameters"""
    return ChangeEvent(
        event_id=event_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        occurred_at=occurred_at,
        actor_id=actor_id,
        before=before,
        after=after,
        payload=payload or {},
    )
