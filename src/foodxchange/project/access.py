"""
Access & Visibility Resolver

Two pure predicates deciding who may see a project and who may bid on it.
The boundary layer turns a False into PermissionDenied.

Visibility rules:
- public: anyone may view; any vendor other than the buyer may bid
- invite-only: the buyer plus vendors holding an accepted invitation
- private: the buyer, plus vendors who already submitted a proposal;
  nobody may start a new bid
"""

from collections.abc import Iterable
from datetime import datetime

from foodxchange.accounts.models import UserRole
from foodxchange.project.models import InvitationStatus, Project, ProjectStatus, Visibility
from foodxchange.proposal.models import Proposal


def has_accepted_invitation(project: Project, user_id: str) -> bool:
    invitation = project.invitation_for(user_id)
    return invitation is not None and invitation.status == InvitationStatus.ACCEPTED


def has_submitted_proposal(
    project: Project, user_id: str, proposals: Iterable[Proposal]
) -> bool:
    """True if the user's proposal on this project has ever been submitted"""
    return any(
        p.project_id == project.id
        and p.vendor_id == user_id
        and p.submitted_at is not None
        for p in proposals
    )


def can_view(
    project: Project, user_id: str | None, proposals: Iterable[Proposal] = ()
) -> bool:
    """
    Whether a user may see the project

    Args:
        project: Project to check
        user_id: Viewer (None for anonymous)
        proposals: The viewer's proposals, consulted for non-public projects
    """
    if project.visibility == Visibility.PUBLIC:
        return True
    if user_id is None:
        return False
    if project.buyer_id == user_id:
        return True
    if project.visibility == Visibility.INVITE_ONLY:
        return has_accepted_invitation(project, user_id)
    return has_submitted_proposal(project, user_id, proposals)


def can_submit_proposal(
    project: Project, user_id: str, role: UserRole, now: datetime
) -> bool:
    """Whether a user may create or submit a proposal on the project right now"""
    if role != UserRole.VENDOR:
        return False
    if project.buyer_id == user_id:
        return False
    if project.status != ProjectStatus.ACTIVE:
        return False
    if now > project.deadline:
        return False
    if project.visibility == Visibility.INVITE_ONLY:
        return has_accepted_invitation(project, user_id)
    if project.visibility == Visibility.PRIVATE:
        return False
    return True


def submission_denial_reason(
    project: Project, user_id: str, role: UserRole, now: datetime
) -> str:
    """Human-readable reason ``can_submit_proposal`` said no"""
    if role != UserRole.VENDOR:
        return "only vendors may submit proposals"
    if project.buyer_id == user_id:
        return "buyers cannot bid on their own project"
    if project.status != ProjectStatus.ACTIVE:
        return f"project is {project.status.value}"
    if now > project.deadline:
        return "project deadline has passed"
    if project.visibility == Visibility.INVITE_ONLY:
        return "no accepted invitation for this invite-only project"
    if project.visibility == Visibility.PRIVATE:
        return "private projects do not accept proposals"
    return ""
