"""
Project Invariants

Pure validation functions for the project state machine, ownership and
deadlines. Everything here raises from the shared error taxonomy.
"""

from datetime import datetime

from foodxchange.kernel.errors import InvalidTransition, PermissionDenied, ValidationFailure
from foodxchange.project.models import Project, ProjectStatus

# Every edge of the project state machine
ALLOWED_TRANSITIONS: dict[ProjectStatus, frozenset[ProjectStatus]] = {
    ProjectStatus.DRAFT: frozenset({ProjectStatus.ACTIVE, ProjectStatus.CANCELLED}),
    ProjectStatus.ACTIVE: frozenset(
        {
            ProjectStatus.IN_REVIEW,
            ProjectStatus.AWARDED,
            ProjectStatus.EXPIRED,
            ProjectStatus.CANCELLED,
        }
    ),
    ProjectStatus.IN_REVIEW: frozenset({ProjectStatus.AWARDED, ProjectStatus.CANCELLED}),
    ProjectStatus.AWARDED: frozenset({ProjectStatus.IN_PROGRESS, ProjectStatus.CANCELLED}),
    ProjectStatus.IN_PROGRESS: frozenset(
        {ProjectStatus.COMPLETED, ProjectStatus.CANCELLED}
    ),
    ProjectStatus.COMPLETED: frozenset(),
    ProjectStatus.CANCELLED: frozenset(),
    ProjectStatus.EXPIRED: frozenset(),
}


def can_transition(from_status: ProjectStatus, to_status: ProjectStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS[from_status]


def validate_transition(project: Project, to_status: ProjectStatus) -> None:
    """
    Raises:
        InvalidTransition: If the edge is not in the state machine
    """
    if not can_transition(project.status, to_status):
        raise InvalidTransition(
            "project", project.id, project.status.value, to_status.value
        )


def validate_buyer(project: Project, actor_id: str, action: str) -> None:
    """
    Raises:
        PermissionDenied: If the actor does not own the project
    """
    if project.buyer_id != actor_id:
        raise PermissionDenied(actor_id, action, f"not the buyer of {project.id}")


def validate_deadline_in_future(deadline: datetime, now: datetime) -> None:
    """
    Raises:
        ValidationFailure: If the deadline is not strictly after now
    """
    if deadline <= now:
        raise ValidationFailure(
            "Project deadline must be in the future",
            errors=[{"loc": ["deadline"], "msg": "Deadline must be in the future"}],
        )
