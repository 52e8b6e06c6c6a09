"""
Project Lifecycle Manager

Pure transition functions: each takes the current Project (plus actor and
clock), validates, and returns an updated copy with a history entry
appended. Persistence and notifications are the caller's business.

The one exception is ``expire_due``, the scheduler's batch sweep, which is a
single conditional ``update_many`` against the entity store.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from foodxchange.kernel.errors import InvalidTransition, PermissionDenied, ValidationFailure
from foodxchange.kernel.ids import generate_reference
from foodxchange.kernel.logging import get_logger
from foodxchange.kernel.metrics import projects_expired_total, record_transition
from foodxchange.kernel.store import SQLiteEntityStore
from foodxchange.project.commands import CreateProject
from foodxchange.project.invariants import (
    validate_buyer,
    validate_deadline_in_future,
    validate_transition,
)
from foodxchange.project.models import (
    Award,
    HistoryEntry,
    Invitation,
    InvitationStatus,
    Project,
    ProjectStatus,
)
from foodxchange.proposal.models import DECIDABLE_STATUSES, Proposal

logger = get_logger(__name__)

PROJECTS = "projects"
SYSTEM_ACTOR = "system"


def _entry(action: str, actor_id: str | None, now: datetime, **changes: Any) -> HistoryEntry:
    return HistoryEntry(action=action, changed_by=actor_id, changed_at=now, changes=changes)


def _transition(
    project: Project,
    to_status: ProjectStatus,
    action: str,
    actor_id: str | None,
    now: datetime,
    changes: dict[str, Any] | None = None,
    **updates: Any,
) -> Project:
    validate_transition(project, to_status)
    entry = _entry(
        action,
        actor_id,
        now,
        status={"from": project.status.value, "to": to_status.value},
        **(changes or {}),
    )
    return project.model_copy(
        update={
            "status": to_status,
            "history": project.history + (entry,),
            "updated_at": now,
            **updates,
        }
    )


def create(command: CreateProject, buyer_id: str, now: datetime) -> Project:
    """
    Build a new draft project

    Raises:
        ValidationFailure: If the deadline is not in the future
    """
    validate_deadline_in_future(command.deadline, now)
    project = Project(
        id=generate_reference("PRJ", now),
        buyer_id=buyer_id,
        created_at=now,
        updated_at=now,
        history=(_entry("created", buyer_id, now),),
        **command.model_dump(),
    )
    return project


def publish(project: Project, actor_id: str, now: datetime) -> Project:
    """
    Draft → active

    ``published_at`` is stamped only the first time.
    """
    validate_buyer(project, actor_id, "publish project")
    if project.status != ProjectStatus.DRAFT:
        raise InvalidTransition("project", project.id, project.status.value, "active")
    if project.deadline <= now:
        raise ValidationFailure(f"Project {project.id} deadline has already passed")
    return _transition(
        project,
        ProjectStatus.ACTIVE,
        "published",
        actor_id,
        now,
        published_at=project.published_at or now,
    )


def begin_review(project: Project, actor_id: str, now: datetime) -> Project:
    """Active → in-review"""
    validate_buyer(project, actor_id, "review project")
    return _transition(project, ProjectStatus.IN_REVIEW, "review_started", actor_id, now)


def award(project: Project, proposal: Proposal, actor_id: str, now: datetime) -> Project:
    """
    Active/in-review → awarded

    The proposal must belong to this project and be in a decidable state.
    Transitioning the winning and losing proposals is left to the caller.
    """
    validate_buyer(project, actor_id, "award project")
    if project.status not in (ProjectStatus.ACTIVE, ProjectStatus.IN_REVIEW):
        raise InvalidTransition("project", project.id, project.status.value, "awarded")
    if proposal.project_id != project.id or proposal.id not in project.proposals:
        raise ValidationFailure(
            f"Proposal {proposal.id} does not belong to project {project.id}"
        )
    if proposal.status not in DECIDABLE_STATUSES:
        raise InvalidTransition(
            "proposal", proposal.id, proposal.status.value, "accepted"
        )

    awarded_to = Award(
        vendor_id=proposal.vendor_id,
        proposal_id=proposal.id,
        awarded_at=now,
        contract_value=proposal.pricing.total_price,
    )
    return _transition(
        project,
        ProjectStatus.AWARDED,
        "awarded",
        actor_id,
        now,
        awarded_to=awarded_to,
    )


def start_progress(project: Project, actor_id: str, now: datetime) -> Project:
    """Awarded → in-progress"""
    validate_buyer(project, actor_id, "start project")
    return _transition(
        project, ProjectStatus.IN_PROGRESS, "progress_started", actor_id, now
    )


def complete(project: Project, actor_id: str, now: datetime) -> Project:
    """In-progress → completed; stamps ``completed_at``"""
    validate_buyer(project, actor_id, "complete project")
    return _transition(
        project,
        ProjectStatus.COMPLETED,
        "completed",
        actor_id,
        now,
        completed_at=project.completed_at or now,
    )


def cancel(
    project: Project, actor_id: str, now: datetime, reason: str | None = None
) -> Project:
    """Any non-terminal state → cancelled (buyer only)"""
    validate_buyer(project, actor_id, "cancel project")
    return _transition(
        project,
        ProjectStatus.CANCELLED,
        "cancelled",
        actor_id,
        now,
        changes={"reason": reason} if reason else None,
    )


def view_changes(viewer_id: str | None) -> tuple[dict[str, int], dict[str, list[str]]]:
    """
    Store counter changes for one view: count it, remember the viewer once

    Applied atomically by the store without a revision bump, so views never
    race each other or a lifecycle write.
    """
    increment = {"analytics.view_count": 1}
    add_to_set = {"analytics.unique_viewers": [viewer_id]} if viewer_id else {}
    return increment, add_to_set


def invite_vendor(
    project: Project, vendor_id: str, actor_id: str, now: datetime
) -> Project:
    """
    Add a pending invitation (buyer only)

    Re-inviting a vendor who declined resets the invitation to pending.
    """
    validate_buyer(project, actor_id, "invite vendor")
    if project.is_terminal:
        raise ValidationFailure(
            f"Project {project.id} is {project.status.value}; invitations are closed"
        )
    if vendor_id == project.buyer_id:
        raise ValidationFailure("A buyer cannot invite themselves")

    existing = project.invitation_for(vendor_id)
    if existing is not None and existing.status != InvitationStatus.DECLINED:
        return project

    invitations = [i for i in project.invited_vendors if i.vendor_id != vendor_id]
    invitations.append(Invitation(vendor_id=vendor_id, invited_at=now))
    return project.model_copy(
        update={
            "invited_vendors": invitations,
            "history": project.history
            + (_entry("vendor_invited", actor_id, now, vendor_id=vendor_id),),
            "updated_at": now,
        }
    )


def respond_to_invitation(
    project: Project, vendor_id: str, accept: bool, now: datetime
) -> Project:
    """
    Pending → accepted/declined, by the invited vendor

    Raises:
        PermissionDenied: If the vendor holds no invitation
        InvalidTransition: If the invitation was already answered
    """
    invitation = project.invitation_for(vendor_id)
    if invitation is None:
        raise PermissionDenied(vendor_id, "answer invitation", f"not invited to {project.id}")
    target = InvitationStatus.ACCEPTED if accept else InvitationStatus.DECLINED
    if invitation.status != InvitationStatus.PENDING:
        raise InvalidTransition(
            "invitation", f"{project.id}:{vendor_id}", invitation.status.value, target.value
        )

    invitations = [
        i.model_copy(update={"status": target}) if i.vendor_id == vendor_id else i
        for i in project.invited_vendors
    ]
    return project.model_copy(
        update={
            "invited_vendors": invitations,
            "history": project.history
            + (_entry(f"invitation_{target.value}", vendor_id, now),),
            "updated_at": now,
        }
    )


def enforce_deadline(project: Project, now: datetime) -> tuple[Project, bool]:
    """
    Per-record expiry check

    Returns the (possibly) expired project and whether it changed. Used on
    load between scheduler sweeps.
    """
    if project.status != ProjectStatus.ACTIVE or project.deadline >= now:
        return project, False
    return (
        _transition(project, ProjectStatus.EXPIRED, "auto_expired", SYSTEM_ACTOR, now),
        True,
    )


def expiry_entry(now: datetime) -> HistoryEntry:
    return _entry(
        "auto_expired",
        SYSTEM_ACTOR,
        now,
        status={"from": ProjectStatus.ACTIVE.value, "to": ProjectStatus.EXPIRED.value},
    )


def expire_due(store: SQLiteEntityStore, now: datetime) -> list[str]:
    """
    Move every active project whose deadline has passed to expired

    Runs as one conditional update: only records still active at write time
    are touched, so a concurrent award is never overwritten. Re-running is a
    no-op once nothing qualifies.

    Returns:
        Ids of the projects expired by this call
    """
    expired_ids = store.update_many(
        PROJECTS,
        {"status": ProjectStatus.ACTIVE, "deadline": {"$lt": now}},
        patch={"status": ProjectStatus.EXPIRED, "updated_at": now},
        push={"history": [expiry_entry(now).model_dump()]},
    )
    if expired_ids:
        projects_expired_total.inc(len(expired_ids))
        for _ in expired_ids:
            record_transition("project", ProjectStatus.ACTIVE.value, ProjectStatus.EXPIRED.value)
        logger.info("Expired overdue projects", count=len(expired_ids), now=now.isoformat())
    return expired_ids


def find_expiring(
    store: SQLiteEntityStore, now: datetime, within_days: int
) -> Iterable[Project]:
    """Active projects with ``now <= deadline <= now + within_days``"""
    docs = store.find(
        PROJECTS,
        {
            "status": ProjectStatus.ACTIVE,
            "deadline": {"$gte": now, "$lte": now + timedelta(days=within_days)},
        },
        sort=[("deadline", 1)],
    )
    return [Project.model_validate(doc) for doc in docs]
