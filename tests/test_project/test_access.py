"""
Tests for the access and visibility resolver

Fun fact: "Invitation to tender" and "open tender" are centuries-old terms;
the 1782 British Parliament already debated whether Navy supply contracts
should be advertised publicly.
"""

from datetime import timedelta

import pytest

from foodxchange.accounts.models import UserRole
from foodxchange.project.access import (
    can_submit_proposal,
    can_view,
    submission_denial_reason,
)
from foodxchange.project.models import (
    Invitation,
    InvitationStatus,
    Project,
    ProjectStatus,
    Visibility,
)
from foodxchange.proposal.models import Proposal
from tests.helpers import COVER_LETTER, NOW, project_command

VENDOR = UserRole.VENDOR


def make_project(visibility: Visibility, **overrides) -> Project:
    return Project.model_validate(
        {
            "id": "PRJ-1",
            "buyer_id": "buyer-1",
            "status": ProjectStatus.ACTIVE,
            "created_at": NOW,
            "updated_at": NOW,
            **project_command(visibility=visibility),
            **overrides,
        }
    )


def invited(vendor_id: str, status: InvitationStatus) -> Invitation:
    return Invitation(vendor_id=vendor_id, invited_at=NOW, status=status)


def own_proposal(submitted: bool) -> Proposal:
    return Proposal(
        id="PRP-1",
        project_id="PRJ-1",
        vendor_id="vendor-1",
        pricing={"unit_price": 1, "total_price": 1},
        delivery={"lead_time_days": 1},
        cover_letter=COVER_LETTER,
        submitted_at=NOW if submitted else None,
        created_at=NOW,
        updated_at=NOW,
    )


# =============================================================================
# Visibility Tests
# =============================================================================


def test_public_project_visible_to_everyone():
    project = make_project(Visibility.PUBLIC)

    assert can_view(project, None)
    assert can_view(project, "vendor-1")


@pytest.mark.parametrize("visibility", [Visibility.INVITE_ONLY, Visibility.PRIVATE])
def test_non_public_hidden_from_anonymous(visibility):
    assert not can_view(make_project(visibility), None)


@pytest.mark.parametrize("visibility", [Visibility.INVITE_ONLY, Visibility.PRIVATE])
def test_buyer_always_sees_own_project(visibility):
    assert can_view(make_project(visibility), "buyer-1")


def test_invite_only_requires_accepted_invitation():
    pending = make_project(
        Visibility.INVITE_ONLY,
        invited_vendors=[invited("vendor-1", InvitationStatus.PENDING)],
    )
    accepted = make_project(
        Visibility.INVITE_ONLY,
        invited_vendors=[invited("vendor-1", InvitationStatus.ACCEPTED)],
    )

    assert not can_view(pending, "vendor-1")
    assert can_view(accepted, "vendor-1")
    assert not can_view(accepted, "vendor-2")


def test_private_visible_only_after_own_submission():
    project = make_project(Visibility.PRIVATE)

    assert not can_view(project, "vendor-1")
    assert not can_view(project, "vendor-1", [own_proposal(submitted=False)])
    assert can_view(project, "vendor-1", [own_proposal(submitted=True)])
    assert not can_view(project, "vendor-2", [own_proposal(submitted=True)])


# =============================================================================
# Submission Rights Tests
# =============================================================================


def test_any_vendor_may_bid_on_public_active_project():
    assert can_submit_proposal(make_project(Visibility.PUBLIC), "vendor-1", VENDOR, NOW)


def test_buyers_cannot_bid():
    project = make_project(Visibility.PUBLIC)

    assert not can_submit_proposal(project, "buyer-2", UserRole.BUYER, NOW)
    assert submission_denial_reason(project, "buyer-2", UserRole.BUYER, NOW) == (
        "only vendors may submit proposals"
    )


def test_owner_cannot_bid_on_own_project():
    project = make_project(Visibility.PUBLIC)

    assert not can_submit_proposal(project, "buyer-1", VENDOR, NOW)


def test_uninvited_vendor_cannot_bid_on_invite_only():
    project = make_project(
        Visibility.INVITE_ONLY,
        invited_vendors=[invited("vendor-1", InvitationStatus.ACCEPTED)],
    )

    assert can_submit_proposal(project, "vendor-1", VENDOR, NOW)
    assert not can_submit_proposal(project, "vendor-2", VENDOR, NOW)
    assert "invitation" in submission_denial_reason(project, "vendor-2", VENDOR, NOW)


def test_private_project_accepts_no_new_bids():
    project = make_project(Visibility.PRIVATE)

    assert not can_submit_proposal(project, "vendor-1", VENDOR, NOW)
    assert "private" in submission_denial_reason(project, "vendor-1", VENDOR, NOW)


def test_no_bids_after_deadline():
    project = make_project(Visibility.PUBLIC)
    after = project.deadline + timedelta(seconds=1)

    assert can_submit_proposal(project, "vendor-1", VENDOR, project.deadline)
    assert not can_submit_proposal(project, "vendor-1", VENDOR, after)
    assert submission_denial_reason(project, "vendor-1", VENDOR, after) == (
        "project deadline has passed"
    )


@pytest.mark.parametrize(
    "status", [ProjectStatus.DRAFT, ProjectStatus.IN_REVIEW, ProjectStatus.AWARDED]
)
def test_no_bids_unless_active(status):
    project = make_project(Visibility.PUBLIC, status=status)

    assert not can_submit_proposal(project, "vendor-1", VENDOR, NOW)
    assert submission_denial_reason(project, "vendor-1", VENDOR, NOW) == (
        f"project is {status.value}"
    )
