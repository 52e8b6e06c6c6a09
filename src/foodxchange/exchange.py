"""
Exchange - Main façade class

This is the primary interface to the FoodXchange lifecycle engine. Every
operation follows the same unit of work:

1. Load fresh state from the entity store (no cached copies)
2. Check access and run the pure lifecycle function
3. Write back with a conditional update on the loaded revision
4. Publish a ChangeEvent, which the synchronizer fans out to the search
   index and the notification outbox

Example:
    >>> from foodxchange import Exchange
    >>> from foodxchange.accounts.models import Actor, UserRole
    >>> exchange = Exchange("marketplace.db")
    >>> buyer = Actor(user_id="buyer-1", role=UserRole.BUYER)
    >>> project = exchange.create_project(buyer, {...})
    >>> exchange.publish_project(buyer, project.id)
    >>> exchange.tick()  # Deadline sweep + expiring-soon reminders
"""

import json
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from foodxchange.accounts.commands import UpsertProfile
from foodxchange.accounts.models import Actor, CompanyProfile, UserRole
from foodxchange.catalog import reviews as catalog_reviews
from foodxchange.catalog.commands import AddReview, AdjustInventory, CreateProduct
from foodxchange.catalog.inventory import availability_status, update_inventory
from foodxchange.catalog.models import (
    AvailabilityStatus,
    InventoryOperation,
    Product,
    derive_sku,
    derive_slug,
)
from foodxchange.catalog.pricing import PriceQuote, price_quote
from foodxchange.kernel.bus import InProcessBus
from foodxchange.kernel.errors import (
    ConditionalUpdateFailed,
    DuplicateProposal,
    EntityNotFound,
    PermissionDenied,
    UniqueConstraintViolation,
    ValidationFailure,
)
from foodxchange.kernel.events import EventType, create_event
from foodxchange.kernel.ids import generate_id
from foodxchange.kernel.logging import LogOperation, get_logger
from foodxchange.kernel.metrics import (
    entities_total,
    projects_expired_total,
    record_transition,
    track_operation,
)
from foodxchange.kernel.policy import MarketplacePolicy
from foodxchange.kernel.store import SQLiteEntityStore, encode_document
from foodxchange.kernel.tick import TickEngine, TickResult
from foodxchange.kernel.time import RealTimeProvider, TimeProvider
from foodxchange.project import lifecycle as projects
from foodxchange.project.access import (
    can_submit_proposal,
    can_view,
    submission_denial_reason,
)
from foodxchange.project.commands import (
    CancelProject,
    CreateProject,
    InviteVendor,
    RespondToInvitation,
)
from foodxchange.project.invariants import validate_buyer
from foodxchange.project.models import Project, ProjectStatus, Visibility
from foodxchange.proposal import lifecycle as proposals
from foodxchange.proposal.commands import (
    CreateProposal,
    EvaluateProposal,
    PostMessage,
    UpdateProposal,
)
from foodxchange.proposal.evaluation import rank_proposals
from foodxchange.proposal.models import (
    DECIDABLE_STATUSES,
    RELEASED_STATUSES,
    Proposal,
    ProposalStatus,
    SenderType,
    proposal_unique_key,
)
from foodxchange.sync.notifications import Notification, SQLiteNotificationOutbox
from foodxchange.sync.search_index import SQLiteSearchIndex
from foodxchange.sync.synchronizer import ConsistencySynchronizer

logger = get_logger(__name__)

PROJECTS = projects.PROJECTS
PROPOSALS = "proposals"
PRODUCTS = "products"
PROFILES = "profiles"

# Stored documents never carry computed fields; the store owns the revision
_NOT_STORED = {"proposal_count", "revision"}

C = TypeVar("C", bound=BaseModel)
M = TypeVar("M", bound=BaseModel)


@contextmanager
def _validating(what: str) -> Iterator[None]:
    """Re-raise pydantic validation errors as ValidationFailure"""
    try:
        yield
    except ValidationError as e:
        raise ValidationFailure(
            f"Invalid {what}: {e.error_count()} validation error(s)",
            errors=[
                {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
                for err in e.errors()
            ],
        ) from e


def _parse(command_type: type[C], data: C | Mapping[str, Any]) -> C:
    if isinstance(data, command_type):
        return data
    with _validating(command_type.__name__):
        return command_type.model_validate(data)


def _document(model: BaseModel) -> dict[str, Any]:
    """The stored shape of a model: plain JSON, datetimes in store format"""
    return json.loads(encode_document(model.model_dump(exclude=_NOT_STORED)))


def _changed_fields(
    old: Mapping[str, Any], new: Mapping[str, Any], prefix: str = ""
) -> dict[str, Any]:
    """
    Dotted-path patch turning ``old`` into ``new``

    Nested objects with the same keys are compared field by field, so a write
    never carries a stale copy of a sibling counter.
    """
    patch: dict[str, Any] = {}
    for field, value in new.items():
        before = old.get(field)
        nested = isinstance(value, dict) and isinstance(before, dict)
        if nested and value.keys() == before.keys():
            patch.update(_changed_fields(before, value, f"{prefix}{field}."))
        elif before != value or field not in old:
            patch[f"{prefix}{field}"] = value
    return patch


class Exchange:
    """
    FoodXchange main façade

    Provides a unified API for:
    - Project lifecycle (create, publish, review, award, progress, cancel)
    - Invitations and visibility checks
    - Proposal lifecycle, evaluation and ranking
    - Catalog pricing and inventory
    - Company profiles for the suppliers index
    - Scheduled maintenance (tick) and full reindex
    """

    def __init__(
        self,
        sqlite_path: str | Path,
        policy: MarketplacePolicy | None = None,
        time_provider: TimeProvider | None = None,
    ) -> None:
        """
        Initialize the exchange

        Args:
            sqlite_path: Path to SQLite database
            policy: Marketplace policy (uses defaults if None)
            time_provider: Time provider (uses real time if None)
        """
        self.sqlite_path = Path(sqlite_path)
        self.policy = policy or MarketplacePolicy()
        self.time_provider = time_provider or RealTimeProvider()

        # Infrastructure
        self.store = SQLiteEntityStore(
            self.sqlite_path,
            self.time_provider,
            unique_keys={PROPOSALS: proposal_unique_key},
        )
        self.search_index = SQLiteSearchIndex(self.sqlite_path, self.time_provider)
        self.outbox = SQLiteNotificationOutbox(self.sqlite_path, self.time_provider)
        self.bus = InProcessBus()
        self.synchronizer = ConsistencySynchronizer(
            self.search_index, self.outbox, self.policy
        )
        self.synchronizer.attach(self.bus)
        self.tick_engine = TickEngine(
            self.store, self.bus, self.time_provider, self.policy
        )

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _commit(
        self,
        collection: str,
        entity_type: str,
        model_type: type[M],
        before: M,
        after: M,
        event_type: EventType,
        actor_id: str | None,
        payload: dict[str, Any] | None = None,
        expected_status: Any = None,
        announce: bool = True,
    ) -> M:
        """
        Conditionally write ``after`` over ``before`` and announce it

        Only fields that differ from ``before`` are written, so counters
        maintained outside the revision (view and inquiry counts) survive a
        lifecycle write. With ``announce=False`` the caller publishes the
        change itself once the rest of its unit of work has landed.
        """
        old = _document(before)
        new = _document(after)
        stored = self.store.update_by_id(
            collection,
            after.id,  # type: ignore[attr-defined]
            patch=_changed_fields(old, new),
            expected_status=expected_status,
            expected_revision=before.revision,  # type: ignore[attr-defined]
        )
        saved = model_type.model_validate(stored)
        from_status = getattr(before, "status", None)
        to_status = getattr(saved, "status", None)
        if from_status is not None and from_status != to_status:
            record_transition(entity_type, from_status.value, to_status.value)
        if announce:
            self._publish(
                event_type,
                entity_type,
                stored["id"],
                actor_id,
                before=old,
                after=stored,
                payload=payload,
            )
        return saved

    def _publish(
        self,
        event_type: EventType,
        entity_type: str,
        entity_id: str,
        actor_id: str | None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self.bus.publish(
            create_event(
                event_id=generate_id(),
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                occurred_at=self.time_provider.now(),
                actor_id=actor_id,
                before=before,
                after=after,
                payload=payload,
            )
        )

    def _save_project(
        self,
        before: Project,
        after: Project,
        event_type: EventType,
        actor_id: str | None,
        payload: dict[str, Any] | None = None,
        expected_status: Any = None,
        announce: bool = True,
    ) -> Project:
        return self._commit(
            PROJECTS, "project", Project, before, after,
            event_type, actor_id, payload, expected_status, announce,
        )

    def _save_proposal(
        self,
        before: Proposal,
        after: Proposal,
        event_type: EventType,
        actor_id: str | None,
        payload: dict[str, Any] | None = None,
        expected_status: Any = None,
        announce: bool = True,
    ) -> Proposal:
        return self._commit(
            PROPOSALS, "proposal", Proposal, before, after,
            event_type, actor_id, payload, expected_status, announce,
        )

    def _load_project(self, project_id: str) -> Project:
        """
        Load a project, expiring it first if its deadline has passed

        The scheduler sweep is authoritative; this only closes the gap
        between sweeps. Losing the race to a concurrent writer is fine.
        """
        project = Project.model_validate(self.store.find_by_id(PROJECTS, project_id))
        expired, changed = projects.enforce_deadline(project, self.time_provider.now())
        if not changed:
            return project
        try:
            saved = self._save_project(
                project,
                expired,
                EventType.PROJECT_EXPIRED,
                None,
                expected_status=ProjectStatus.ACTIVE,
            )
        except ConditionalUpdateFailed:
            return Project.model_validate(self.store.find_by_id(PROJECTS, project_id))
        projects_expired_total.inc()
        logger.info("Project expired on load", project_id=project_id)
        return saved

    def _load_proposal(self, proposal_id: str) -> Proposal:
        return Proposal.model_validate(self.store.find_by_id(PROPOSALS, proposal_id))

    def _proposals_of(self, project_id: str, vendor_id: str | None = None) -> list[Proposal]:
        filter: dict[str, Any] = {"project_id": project_id}
        if vendor_id is not None:
            filter["vendor_id"] = vendor_id
        return [Proposal.model_validate(doc) for doc in self.store.find(PROPOSALS, filter)]

    def _bidding_vendors(self, project_id: str) -> list[str]:
        """Vendors holding a live, submitted proposal on the project"""
        return sorted(
            {
                p.vendor_id
                for p in self._proposals_of(project_id)
                if p.submitted_at is not None and p.status not in RELEASED_STATUSES
            }
        )

    @staticmethod
    def _require_role(actor: Actor, role: UserRole, action: str) -> None:
        if actor.role != role:
            raise PermissionDenied(actor.user_id, action, f"requires role {role.value}")

    @staticmethod
    def _project_payload(project: Project, **extra: Any) -> dict[str, Any]:
        return {
            "project_id": project.id,
            "project_title": project.title,
            "buyer_id": project.buyer_id,
            **extra,
        }

    # ------------------------------------------------------------------
    # Project operations
    # ------------------------------------------------------------------

    @track_operation("create_project")
    def create_project(
        self, actor: Actor, command: CreateProject | Mapping[str, Any]
    ) -> Project:
        """
        Create a draft project owned by the calling buyer

        Raises:
            PermissionDenied: If the actor is not a buyer
            ValidationFailure: On malformed input, an inverted budget range or
                a deadline that is not in the future
        """
        with LogOperation(logger, "create_project", actor_id=actor.user_id):
            self._require_role(actor, UserRole.BUYER, "create project")
            command = _parse(CreateProject, command)
            with _validating("project"):
                project = projects.create(command, actor.user_id, self.time_provider.now())
            stored = self.store.create(PROJECTS, _document(project))
            self._publish(
                EventType.PROJECT_CREATED, "project", project.id, actor.user_id, after=stored
            )
            return Project.model_validate(stored)

    @track_operation("publish_project")
    def publish_project(self, actor: Actor, project_id: str) -> Project:
        """Draft → active; pending invitees are notified"""
        with LogOperation(logger, "publish_project", project_id=project_id, actor_id=actor.user_id):
            project = self._load_project(project_id)
            published = projects.publish(project, actor.user_id, self.time_provider.now())
            return self._save_project(
                project,
                published,
                EventType.PROJECT_PUBLISHED,
                actor.user_id,
                expected_status=ProjectStatus.DRAFT,
            )

    def get_project(self, project_id: str) -> Project:
        """Load a project without access checks (internal and admin use)"""
        return self._load_project(project_id)

    @track_operation("view_project")
    def view_project(self, actor: Actor | None, project_id: str) -> Project:
        """
        Load a project on behalf of a viewer and count the view

        Raises:
            PermissionDenied: If the viewer may not see the project
        """
        viewer_id = actor.user_id if actor else None
        with LogOperation(logger, "view_project", project_id=project_id, viewer_id=viewer_id):
            project = self._load_project(project_id)
            own = (
                self._proposals_of(project.id, viewer_id)
                if viewer_id and project.visibility == Visibility.PRIVATE
                else []
            )
            if not can_view(project, viewer_id, own):
                raise PermissionDenied(
                    viewer_id, "view project", f"{project.id} is {project.visibility.value}"
                )
            if viewer_id == project.buyer_id:
                return project

            increment, add_to_set = projects.view_changes(viewer_id)
            stored = self.store.update_by_id(
                PROJECTS,
                project.id,
                increment=increment,
                add_to_set=add_to_set,
                bump_revision=False,
            )
            self._publish(
                EventType.PROJECT_VIEWED, "project", project.id, viewer_id, after=stored
            )
            return Project.model_validate(stored)

    def list_projects(
        self,
        status: ProjectStatus | None = None,
        buyer_id: str | None = None,
        limit: int | None = None,
        skip: int = 0,
    ) -> list[Project]:
        """Projects newest first, optionally filtered by status and buyer"""
        filter: dict[str, Any] = {}
        if status is not None:
            filter["status"] = status
        if buyer_id is not None:
            filter["buyer_id"] = buyer_id
        docs = self.store.find(
            PROJECTS, filter, sort=[("created_at", -1)], limit=limit, skip=skip
        )
        return [Project.model_validate(doc) for doc in docs]

    @track_operation("begin_review")
    def begin_review(self, actor: Actor, project_id: str) -> Project:
        """Active → in-review"""
        with LogOperation(logger, "begin_review", project_id=project_id, actor_id=actor.user_id):
            project = self._load_project(project_id)
            reviewing = projects.begin_review(project, actor.user_id, self.time_provider.now())
            return self._save_project(
                project, reviewing, EventType.PROJECT_REVIEW_STARTED, actor.user_id
            )

    @track_operation("award_project")
    def award_project(self, actor: Actor, project_id: str, proposal_id: str) -> Project:
        """
        Award a project to one proposal

        The project write is conditional on its status still being active or
        in-review, so of two concurrent awards exactly one succeeds. The
        winner is then accepted and every other decidable proposal rejected.
        If the winner changed in between (e.g. it was withdrawn), the project
        is restored to its pre-award state before the conflict is raised, and
        nothing about the award is announced.

        Raises:
            PermissionDenied: If the actor is not the buyer
            InvalidTransition: If the project or proposal cannot be decided
            ValidationFailure: If the proposal belongs to another project
            ConditionalUpdateFailed: If a concurrent write got there first
        """
        with LogOperation(
            logger,
            "award_project",
            project_id=project_id,
            proposal_id=proposal_id,
            actor_id=actor.user_id,
        ):
            now = self.time_provider.now()
            project = self._load_project(project_id)
            proposal = self._load_proposal(proposal_id)
            awarded = projects.award(project, proposal, actor.user_id, now)
            winner = proposals.accept(proposal, now)

            saved = self._save_project(
                project,
                awarded,
                EventType.PROJECT_AWARDED,
                actor.user_id,
                expected_status=[ProjectStatus.ACTIVE, ProjectStatus.IN_REVIEW],
                announce=False,
            )
            payload = self._project_payload(saved)
            try:
                self._save_proposal(
                    proposal,
                    winner,
                    EventType.PROPOSAL_ACCEPTED,
                    actor.user_id,
                    payload=payload,
                    expected_status=list(DECIDABLE_STATUSES),
                )
            except ConditionalUpdateFailed:
                self._revert_award(project, saved)
                raise
            self._publish(
                EventType.PROJECT_AWARDED,
                "project",
                saved.id,
                actor.user_id,
                before=_document(project),
                after=_document(saved),
            )

            for other in self._proposals_of(project.id):
                if other.id == proposal.id or other.status not in DECIDABLE_STATUSES:
                    continue
                try:
                    self._save_proposal(
                        other,
                        proposals.reject(other, now),
                        EventType.PROPOSAL_REJECTED,
                        actor.user_id,
                        payload=payload,
                        expected_status=list(DECIDABLE_STATUSES),
                    )
                except ConditionalUpdateFailed:
                    logger.warning(
                        "Losing proposal changed during award",
                        project_id=project.id,
                        proposal_id=other.id,
                    )
            return saved

    def _revert_award(self, project: Project, awarded: Project) -> None:
        """Put back the pre-award fields of a project whose winner was lost"""
        restored = _changed_fields(_document(awarded), _document(project))
        try:
            self.store.update_by_id(
                PROJECTS,
                project.id,
                patch=restored,
                expected_status=ProjectStatus.AWARDED,
                expected_revision=awarded.revision,
            )
        except ConditionalUpdateFailed:
            logger.error(
                "Award could not be reverted",
                project_id=project.id,
                proposal_id=awarded.awarded_to.proposal_id if awarded.awarded_to else None,
            )
            raise
        logger.warning(
            "Award reverted, winning proposal changed",
            project_id=project.id,
            status=project.status.value,
        )

    @track_operation("start_progress")
    def start_progress(self, actor: Actor, project_id: str) -> Project:
        """Awarded → in-progress"""
        with LogOperation(logger, "start_progress", project_id=project_id, actor_id=actor.user_id):
            project = self._load_project(project_id)
            started = projects.start_progress(project, actor.user_id, self.time_provider.now())
            return self._save_project(
                project, started, EventType.PROJECT_PROGRESS_STARTED, actor.user_id
            )

    @track_operation("complete_project")
    def complete_project(self, actor: Actor, project_id: str) -> Project:
        """In-progress → completed"""
        with LogOperation(logger, "complete_project", project_id=project_id, actor_id=actor.user_id):
            project = self._load_project(project_id)
            completed = projects.complete(project, actor.user_id, self.time_provider.now())
            return self._save_project(
                project, completed, EventType.PROJECT_COMPLETED, actor.user_id
            )

    @track_operation("cancel_project")
    def cancel_project(
        self,
        actor: Actor,
        project_id: str,
        command: CancelProject | Mapping[str, Any] | None = None,
    ) -> Project:
        """Any non-terminal state → cancelled; bidding vendors are notified"""
        with LogOperation(logger, "cancel_project", project_id=project_id, actor_id=actor.user_id):
            command = _parse(CancelProject, command or {})
            project = self._load_project(project_id)
            cancelled = projects.cancel(
                project, actor.user_id, self.time_provider.now(), command.reason
            )
            return self._save_project(
                project,
                cancelled,
                EventType.PROJECT_CANCELLED,
                actor.user_id,
                payload=self._project_payload(
                    project, vendor_ids=self._bidding_vendors(project.id)
                ),
            )

    @track_operation("invite_vendor")
    def invite_vendor(
        self, actor: Actor, project_id: str, command: InviteVendor | Mapping[str, Any]
    ) -> Project:
        """Invite a vendor to bid; re-inviting a pending vendor changes nothing"""
        command = _parse(InviteVendor, command)
        with LogOperation(
            logger, "invite_vendor", project_id=project_id, vendor_id=command.vendor_id
        ):
            project = self._load_project(project_id)
            invited = projects.invite_vendor(
                project, command.vendor_id, actor.user_id, self.time_provider.now()
            )
            if invited is project:
                return project
            return self._save_project(
                project,
                invited,
                EventType.VENDOR_INVITED,
                actor.user_id,
                payload=self._project_payload(project, vendor_id=command.vendor_id),
            )

    @track_operation("respond_to_invitation")
    def respond_to_invitation(
        self,
        actor: Actor,
        project_id: str,
        command: RespondToInvitation | Mapping[str, Any],
    ) -> Project:
        """The invited vendor accepts or declines"""
        command = _parse(RespondToInvitation, command)
        with LogOperation(
            logger, "respond_to_invitation", project_id=project_id, vendor_id=actor.user_id
        ):
            project = self._load_project(project_id)
            answered = projects.respond_to_invitation(
                project, actor.user_id, command.accept, self.time_provider.now()
            )
            return self._save_project(
                project,
                answered,
                EventType.INVITATION_ANSWERED,
                actor.user_id,
                payload=self._project_payload(
                    project, vendor_id=actor.user_id, accepted=command.accept
                ),
            )

    def expiring_projects(self, within_days: int | None = None) -> list[Project]:
        """Active projects whose deadline falls within the reminder window"""
        days = self.policy.expiring_soon_days if within_days is None else within_days
        return list(projects.find_expiring(self.store, self.time_provider.now(), days))

    # ------------------------------------------------------------------
    # Proposal operations
    # ------------------------------------------------------------------

    def _check_submission(self, project: Project, actor: Actor, action: str) -> None:
        now = self.time_provider.now()
        if not can_submit_proposal(project, actor.user_id, actor.role, now):
            raise PermissionDenied(
                actor.user_id,
                action,
                submission_denial_reason(project, actor.user_id, actor.role, now),
            )

    @track_operation("create_proposal")
    def create_proposal(
        self, actor: Actor, command: CreateProposal | Mapping[str, Any]
    ) -> Proposal:
        """
        Start a draft proposal on a project

        Raises:
            PermissionDenied: If the vendor may not bid on the project
            DuplicateProposal: If the vendor already holds a live proposal on it
        """
        command = _parse(CreateProposal, command)
        with LogOperation(
            logger, "create_proposal", project_id=command.project_id, vendor_id=actor.user_id
        ):
            project = self._load_project(command.project_id)
            self._check_submission(project, actor, "create proposal")
            with _validating("proposal"):
                proposal = proposals.create(command, actor.user_id, self.time_provider.now())
            try:
                stored = self.store.create(PROPOSALS, _document(proposal))
            except UniqueConstraintViolation as e:
                raise DuplicateProposal(project.id, actor.user_id) from e

            self.store.update_by_id(PROJECTS, project.id, push={"proposals": [proposal.id]})
            self._publish(
                EventType.PROPOSAL_CREATED,
                "proposal",
                proposal.id,
                actor.user_id,
                after=stored,
                payload=self._project_payload(project),
            )
            return Proposal.model_validate(stored)

    def get_proposal(self, proposal_id: str) -> Proposal:
        return self._load_proposal(proposal_id)

    @track_operation("update_proposal")
    def update_proposal(
        self,
        actor: Actor,
        proposal_id: str,
        command: UpdateProposal | Mapping[str, Any],
    ) -> Proposal:
        """Vendor edit; pricing changes land in the negotiation history"""
        command = _parse(UpdateProposal, command)
        with LogOperation(logger, "update_proposal", proposal_id=proposal_id, vendor_id=actor.user_id):
            proposal = self._load_proposal(proposal_id)
            updated = proposals.update(proposal, command, actor.user_id, self.time_provider.now())
            if updated is proposal:
                return proposal
            return self._save_proposal(
                proposal, updated, EventType.PROPOSAL_UPDATED, actor.user_id
            )

    @track_operation("submit_proposal")
    def submit_proposal(self, actor: Actor, proposal_id: str) -> Proposal:
        """
        Draft → submitted; the buyer is notified

        Bidding rights are checked again, since visibility or the deadline may
        have changed since the draft was created.

        Raises:
            PermissionDenied: If the vendor may no longer bid on the project
            MissingPriceValidity: If pricing has no validity date
        """
        with LogOperation(logger, "submit_proposal", proposal_id=proposal_id, vendor_id=actor.user_id):
            proposal = self._load_proposal(proposal_id)
            project = self._load_project(proposal.project_id)
            self._check_submission(project, actor, "submit proposal")
            submitted = proposals.submit(proposal, actor.user_id, self.time_provider.now())
            return self._save_proposal(
                proposal,
                submitted,
                EventType.PROPOSAL_SUBMITTED,
                actor.user_id,
                payload=self._project_payload(project),
                expected_status=ProposalStatus.DRAFT,
            )

    def _buyer_decision(
        self,
        actor: Actor,
        proposal_id: str,
        action: str,
        transition: Callable[[Proposal], Proposal],
        event_type: EventType,
    ) -> Proposal:
        with LogOperation(logger, action, proposal_id=proposal_id, actor_id=actor.user_id):
            proposal = self._load_proposal(proposal_id)
            project = self._load_project(proposal.project_id)
            validate_buyer(project, actor.user_id, action)
            return self._save_proposal(
                proposal,
                transition(proposal),
                event_type,
                actor.user_id,
                payload=self._project_payload(project),
                expected_status=proposal.status,
            )

    @track_operation("start_proposal_review")
    def start_proposal_review(self, actor: Actor, proposal_id: str) -> Proposal:
        now = self.time_provider.now()
        return self._buyer_decision(
            actor,
            proposal_id,
            "start_proposal_review",
            lambda p: proposals.start_review(p, now),
            EventType.PROPOSAL_STATUS_CHANGED,
        )

    @track_operation("request_clarification")
    def request_clarification(self, actor: Actor, proposal_id: str) -> Proposal:
        now = self.time_provider.now()
        return self._buyer_decision(
            actor,
            proposal_id,
            "request_clarification",
            lambda p: proposals.request_clarification(p, now),
            EventType.PROPOSAL_STATUS_CHANGED,
        )

    @track_operation("shortlist_proposal")
    def shortlist_proposal(self, actor: Actor, proposal_id: str) -> Proposal:
        now = self.time_provider.now()
        return self._buyer_decision(
            actor,
            proposal_id,
            "shortlist_proposal",
            lambda p: proposals.shortlist(p, now),
            EventType.PROPOSAL_STATUS_CHANGED,
        )

    @track_operation("reject_proposal")
    def reject_proposal(self, actor: Actor, proposal_id: str) -> Proposal:
        """Irreversible; the vendor is notified and may bid again"""
        now = self.time_provider.now()
        return self._buyer_decision(
            actor,
            proposal_id,
            "reject_proposal",
            lambda p: proposals.reject(p, now),
            EventType.PROPOSAL_REJECTED,
        )

    @track_operation("revise_proposal")
    def revise_proposal(self, actor: Actor, proposal_id: str) -> Proposal:
        with LogOperation(logger, "revise_proposal", proposal_id=proposal_id, vendor_id=actor.user_id):
            proposal = self._load_proposal(proposal_id)
            revised = proposals.revise(proposal, actor.user_id, self.time_provider.now())
            return self._save_proposal(
                proposal,
                revised,
                EventType.PROPOSAL_STATUS_CHANGED,
                actor.user_id,
                expected_status=proposal.status,
            )

    @track_operation("withdraw_proposal")
    def withdraw_proposal(self, actor: Actor, proposal_id: str) -> Proposal:
        """Vendor pulls out; frees the (project, vendor) slot"""
        with LogOperation(logger, "withdraw_proposal", proposal_id=proposal_id, vendor_id=actor.user_id):
            proposal = self._load_proposal(proposal_id)
            withdrawn = proposals.withdraw(proposal, actor.user_id, self.time_provider.now())
            return self._save_proposal(
                proposal,
                withdrawn,
                EventType.PROPOSAL_WITHDRAWN,
                actor.user_id,
                expected_status=proposal.status,
            )

    @track_operation("view_proposal")
    def view_proposal(self, actor: Actor, proposal_id: str) -> Proposal:
        """
        Load a proposal for its vendor or the project's buyer

        The buyer's first look flags the proposal as viewed.
        """
        with LogOperation(logger, "view_proposal", proposal_id=proposal_id, viewer_id=actor.user_id):
            proposal = self._load_proposal(proposal_id)
            if actor.user_id == proposal.vendor_id:
                return proposal
            project = self._load_project(proposal.project_id)
            validate_buyer(project, actor.user_id, "view proposal")
            viewed = proposals.mark_viewed(proposal, self.time_provider.now())
            if viewed is proposal:
                return proposal
            return self._save_proposal(
                proposal, viewed, EventType.PROPOSAL_VIEWED, actor.user_id
            )

    @track_operation("post_message")
    def post_message(
        self, actor: Actor, proposal_id: str, command: PostMessage | Mapping[str, Any]
    ) -> Proposal:
        """Append to a proposal's thread; the other party is notified"""
        command = _parse(PostMessage, command)
        with LogOperation(logger, "post_message", proposal_id=proposal_id, sender_id=actor.user_id):
            proposal = self._load_proposal(proposal_id)
            project = self._load_project(proposal.project_id)
            if actor.user_id == proposal.vendor_id:
                sender_type, recipient_id = SenderType.VENDOR, project.buyer_id
            elif actor.user_id == project.buyer_id:
                sender_type, recipient_id = SenderType.BUYER, proposal.vendor_id
            else:
                raise PermissionDenied(
                    actor.user_id, "post message", f"not a party to {proposal.id}"
                )
            updated = proposals.add_message(
                proposal, actor.user_id, sender_type, command.message, self.time_provider.now()
            )
            return self._save_proposal(
                proposal,
                updated,
                EventType.PROPOSAL_MESSAGE_ADDED,
                actor.user_id,
                payload=self._project_payload(project, recipient_id=recipient_id),
            )

    @track_operation("evaluate_proposal")
    def evaluate_proposal(
        self,
        actor: Actor,
        proposal_id: str,
        command: EvaluateProposal | Mapping[str, Any],
    ) -> Proposal:
        """Buyer records sub-scores; the overall score is derived"""
        command = _parse(EvaluateProposal, command)
        with LogOperation(logger, "evaluate_proposal", proposal_id=proposal_id, actor_id=actor.user_id):
            proposal = self._load_proposal(proposal_id)
            project = self._load_project(proposal.project_id)
            validate_buyer(project, actor.user_id, "evaluate proposal")
            evaluated = proposals.evaluate(
                proposal, command, actor.user_id, self.time_provider.now(), self.policy
            )
            return self._save_proposal(
                proposal, evaluated, EventType.PROPOSAL_EVALUATED, actor.user_id
            )

    def list_proposals(self, actor: Actor, project_id: str) -> list[Proposal]:
        """All proposals for the project's buyer; only their own for a vendor"""
        project = self._load_project(project_id)
        if actor.user_id == project.buyer_id:
            return self._proposals_of(project.id)
        return self._proposals_of(project.id, actor.user_id)

    def top_proposals(
        self, actor: Actor, project_id: str, limit: int | None = None
    ) -> list[Proposal]:
        """Best-ranked submitted/shortlisted proposals (buyer only)"""
        project = self._load_project(project_id)
        validate_buyer(project, actor.user_id, "compare proposals")
        return rank_proposals(
            self._proposals_of(project.id),
            limit or self.policy.top_proposals_limit,
        )

    # ------------------------------------------------------------------
    # Catalog operations
    # ------------------------------------------------------------------

    @track_operation("create_product")
    def create_product(
        self, actor: Actor, command: CreateProduct | Mapping[str, Any]
    ) -> Product:
        """List a product; SKU, slug and availability status are derived here"""
        self._require_role(actor, UserRole.VENDOR, "create product")
        command = _parse(CreateProduct, command)
        with LogOperation(logger, "create_product", supplier_id=actor.user_id):
            now = self.time_provider.now()
            availability = command.availability
            if availability.status not in (
                AvailabilityStatus.PRE_ORDER,
                AvailabilityStatus.SEASONAL,
            ):
                availability = availability.model_copy(
                    update={
                        "status": availability_status(
                            availability.quantity.available, self.policy
                        )
                    }
                )
            with _validating("product"):
                product = Product(
                    id=generate_id(),
                    slug=derive_slug(
                        command.name, self.store.count(PRODUCTS, {"name": command.name})
                    ),
                    sku=derive_sku(command.category),
                    supplier_id=actor.user_id,
                    created_at=now,
                    updated_at=now,
                    **command.model_dump(exclude={"availability"}),
                    availability=availability,
                )
            stored = self.store.create(PRODUCTS, _document(product))
            self._publish(
                EventType.PRODUCT_CHANGED, "product", product.id, actor.user_id, after=stored
            )
            return Product.model_validate(stored)

    def get_product(self, product_id: str) -> Product:
        """
        Raises:
            EntityNotFound: If the product is missing or was deleted
        """
        product = Product.model_validate(self.store.find_by_id(PRODUCTS, product_id))
        if not product.is_active:
            raise EntityNotFound(PRODUCTS, product_id)
        return product

    def _count_product(self, product_id: str, counter: str) -> Product:
        self.get_product(product_id)
        stored = self.store.update_by_id(
            PRODUCTS,
            product_id,
            increment={f"metrics.{counter}": 1},
            bump_revision=False,
        )
        return Product.model_validate(stored)

    @track_operation("view_product")
    def view_product(self, actor: Actor | None, product_id: str) -> Product:
        """Load a product for a viewer; views by its own supplier are not counted"""
        product = self.get_product(product_id)
        if actor is not None and actor.user_id == product.supplier_id:
            return product
        return self._count_product(product_id, "views")

    @track_operation("record_inquiry")
    def record_inquiry(self, actor: Actor, product_id: str) -> Product:
        """Count a buyer's inquiry about a product"""
        self._require_role(actor, UserRole.BUYER, "inquire about product")
        with LogOperation(logger, "record_inquiry", product_id=product_id, buyer_id=actor.user_id):
            return self._count_product(product_id, "inquiries")

    @track_operation("add_review")
    def add_review(
        self,
        actor: Actor,
        product_id: str,
        command: AddReview | Mapping[str, Any],
    ) -> Product:
        """
        Review a product once per reviewer; the rating is re-derived before the write

        Raises:
            PermissionDenied: If the supplier reviews their own product
            ValidationFailure: If the actor already reviewed the product
        """
        command = _parse(AddReview, command)
        with LogOperation(logger, "add_review", product_id=product_id, reviewer_id=actor.user_id):
            product = self.get_product(product_id)
            reviewed = catalog_reviews.add_review(
                product, command, actor.user_id, self.time_provider.now()
            )
            return self._commit(
                PRODUCTS,
                "product",
                Product,
                product,
                reviewed,
                EventType.PRODUCT_REVIEWED,
                actor.user_id,
                payload={"rating": command.rating},
            )

    @track_operation("delete_product")
    def delete_product(self, actor: Actor, product_id: str) -> Product:
        """Soft delete; the product stops resolving but stays in the store"""
        with LogOperation(logger, "delete_product", product_id=product_id, actor_id=actor.user_id):
            product = self.get_product(product_id)
            deleted = catalog_reviews.soft_delete(
                product, actor.user_id, self.time_provider.now()
            )
            return self._commit(
                PRODUCTS,
                "product",
                Product,
                product,
                deleted,
                EventType.PRODUCT_CHANGED,
                actor.user_id,
            )

    @track_operation("adjust_inventory")
    def adjust_inventory(
        self,
        actor: Actor,
        product_id: str,
        command: AdjustInventory | Mapping[str, Any],
    ) -> Product:
        """
        Apply one stock movement

        The write is conditional on the revision that was read, so two
        concurrent movements cannot both apply to the same starting count.
        """
        command = _parse(AdjustInventory, command)
        with LogOperation(
            logger,
            "adjust_inventory",
            product_id=product_id,
            delta=command.delta,
            inventory_operation=command.operation.value,
        ):
            product = self.get_product(product_id)
            if product.supplier_id != actor.user_id:
                raise PermissionDenied(
                    actor.user_id, "adjust inventory", f"not the supplier of {product.id}"
                )
            now = self.time_provider.now()
            change = update_inventory(
                product.availability.quantity.available,
                command.delta,
                command.operation,
                now,
                self.policy,
            )
            stored = self.store.update_by_id(
                PRODUCTS,
                product.id,
                patch={
                    "availability.quantity.available": change.available,
                    "availability.quantity.last_updated": change.last_updated,
                    "availability.status": change.status,
                    "updated_at": now,
                },
                increment=(
                    {"metrics.orders": 1}
                    if command.operation == InventoryOperation.SUBTRACT
                    else None
                ),
                expected_revision=product.revision,
            )
            self._publish(
                EventType.PRODUCT_CHANGED,
                "product",
                product.id,
                actor.user_id,
                before=_document(product),
                after=stored,
            )
            return Product.model_validate(stored)

    def quote(self, product_id: str, quantity: float) -> PriceQuote:
        """Unit and total price for a quantity under the product's tiers"""
        return price_quote(self.get_product(product_id), quantity)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    @track_operation("upsert_profile")
    def upsert_profile(
        self, actor: Actor, command: UpsertProfile | Mapping[str, Any]
    ) -> CompanyProfile:
        """Create or replace the caller's company profile"""
        command = _parse(UpsertProfile, command)
        with LogOperation(logger, "upsert_profile", user_id=actor.user_id):
            now = self.time_provider.now()
            try:
                current = CompanyProfile.model_validate(
                    self.store.find_by_id(PROFILES, actor.user_id)
                )
            except EntityNotFound:
                current = None

            with _validating("profile"):
                profile = CompanyProfile(
                    id=actor.user_id,
                    role=actor.role,
                    created_at=current.created_at if current else now,
                    updated_at=now,
                    revision=current.revision if current else 0,
                    **command.model_dump(),
                )

            if current is None:
                stored = self.store.create(PROFILES, _document(profile))
                self._publish(
                    EventType.VENDOR_PROFILE_UPDATED,
                    "profile",
                    profile.id,
                    actor.user_id,
                    after=stored,
                )
                return CompanyProfile.model_validate(stored)

            return self._commit(
                PROFILES,
                "profile",
                CompanyProfile,
                current,
                profile,
                EventType.VENDOR_PROFILE_UPDATED,
                actor.user_id,
            )

    # ------------------------------------------------------------------
    # Maintenance and monitoring
    # ------------------------------------------------------------------

    def tick(self) -> TickResult:
        """Run the deadline sweep and the expiring-soon reminders"""
        return self.tick_engine.tick()

    def reindex(self) -> dict[str, int]:
        """Rebuild the projects and suppliers indices from the entity store"""
        return self.synchronizer.reindex_all(self.store)

    def notifications_for(self, user_id: str) -> list[Notification]:
        return self.outbox.list_for(user_id)

    def unread_count(self, user_id: str) -> int:
        return self.outbox.unread_count(user_id)

    def mark_notification_read(self, user_id: str, notification_id: str | None = None) -> int:
        """
        Mark one of a user's notifications read, or all of them when no id is given

        Returns:
            How many notifications changed

        Raises:
            EntityNotFound: If the user has no notification with that id
        """
        if notification_id is None:
            return self.outbox.mark_all_as_read(user_id)
        self.outbox.mark_as_read(notification_id, user_id)
        return 1

    def entity_counts(self) -> dict[str, int]:
        """Stored entities per collection (also refreshes the gauge)"""
        counts = self.store.count_by_collection()
        for collection, count in counts.items():
            entities_total.labels(collection=collection).set(count)
        return counts

    def get_policy(self) -> MarketplacePolicy:
        return self.policy
