"""
End-to-End Integration Tests - Complete Sourcing Workflows

These tests verify that all components work together correctly:
- Façade → Lifecycle → Entity Store → Change Events → Search Index + Outbox

Each scenario reads back through a fresh Exchange on the same database, the
way a second process would.
"""

from datetime import timedelta

import pytest

from foodxchange.catalog.models import AvailabilityStatus
from foodxchange.exchange import Exchange
from foodxchange.kernel.errors import InvalidTransition, PermissionDenied
from foodxchange.project.models import ProjectStatus
from foodxchange.proposal.models import ProposalStatus
from foodxchange.sync.notifications import NotificationType
from tests.helpers import (
    NOW,
    product_command,
    project_command,
    proposal_command,
    submitted_proposal,
)


@pytest.fixture
def reopen(temp_db, policy, test_time):
    """Open a second Exchange on the same database"""

    def _reopen() -> Exchange:
        return Exchange(temp_db, policy, test_time)

    return _reopen


def types_for(exchange: Exchange, user_id: str) -> list[NotificationType]:
    return sorted(n.type for n in exchange.notifications_for(user_id))


def test_complete_invite_only_sourcing_round(
    exchange, reopen, buyer, vendor, second_vendor, third_vendor, test_time
):
    """
    Full round: invite → publish → bid → negotiate → evaluate → award → deliver

    Fun fact: A reverse auction, where sellers bid prices down, is how most
    large food buyers source commodities - the buyer's role is flipped
    compared to a classic English auction.
    """
    # Draft with three invitations, published once the list is complete
    project = exchange.create_project(buyer, project_command(visibility="invite-only"))
    for invitee in (vendor, second_vendor, third_vendor):
        exchange.invite_vendor(buyer, project.id, {"vendor_id": invitee.user_id})
    exchange.publish_project(buyer, project.id)
    assert types_for(exchange, vendor.user_id) == [NotificationType.PROJECT_INVITATION]

    exchange.respond_to_invitation(vendor, project.id, {"accept": True})
    exchange.respond_to_invitation(second_vendor, project.id, {"accept": True})
    exchange.respond_to_invitation(third_vendor, project.id, {"accept": False})
    with pytest.raises(PermissionDenied):
        exchange.create_proposal(third_vendor, proposal_command(project.id))

    # Two bids, one renegotiated after a clarification request
    test_time.advance_days(1)
    first = submitted_proposal(exchange, vendor, project.id, total_price=125000)
    second = submitted_proposal(exchange, second_vendor, project.id, total_price=118000)
    exchange.request_clarification(buyer, first.id)
    exchange.post_message(buyer, first.id, {"message": "Can you match 115k?"})
    pricing = first.pricing.model_dump()
    pricing["total_price"] = 115000
    exchange.update_proposal(vendor, first.id, {"pricing": pricing, "reason": "Matched offer"})
    exchange.revise_proposal(vendor, first.id)
    exchange.shortlist_proposal(buyer, first.id)

    exchange.evaluate_proposal(buyer, first.id, {"price": 90, "quality": 85, "delivery": 80, "vendor": 80})
    exchange.evaluate_proposal(buyer, second.id, {"price": 85, "quality": 70, "delivery": 70, "vendor": 60})
    ranked = exchange.top_proposals(buyer, project.id)
    assert [p.id for p in ranked] == [first.id, second.id]

    # Award and delivery
    exchange.begin_review(buyer, project.id)
    exchange.award_project(buyer, project.id, first.id)
    exchange.start_progress(buyer, project.id)
    exchange.complete_project(buyer, project.id)

    # Read everything back through a second process
    other = reopen()
    final = other.get_project(project.id)
    assert final.status == ProjectStatus.COMPLETED
    assert final.awarded_to.vendor_id == vendor.user_id
    assert final.awarded_to.contract_value == 115000
    assert [h.action for h in final.history] == [
        "created",
        "vendor_invited",
        "vendor_invited",
        "vendor_invited",
        "published",
        "invitation_accepted",
        "invitation_accepted",
        "invitation_declined",
        "review_started",
        "awarded",
        "progress_started",
        "completed",
    ]

    winner = other.get_proposal(first.id)
    assert winner.status == ProposalStatus.ACCEPTED
    assert winner.negotiation_history[0].changes["total_price"] == {"from": 125000, "to": 115000}
    assert [m.message for m in winner.messages] == ["Can you match 115k?"]
    assert other.get_proposal(second.id).status == ProposalStatus.REJECTED

    assert NotificationType.PROPOSAL_ACCEPTED in types_for(other, vendor.user_id)
    assert NotificationType.PROPOSAL_REJECTED in types_for(other, second_vendor.user_id)
    assert types_for(other, buyer.user_id).count(NotificationType.PROPOSAL_RECEIVED) == 2

    indexed = other.search_index.get(other.policy.projects_index, project.id)
    assert indexed["status"] == "completed"


def test_deadline_round_with_reminders_and_expiry(exchange, reopen, buyer, vendor, test_time):
    """Reminders while the deadline approaches, expiry once it passes"""
    project = exchange.create_project(
        buyer, project_command(deadline=NOW + timedelta(days=2))
    )
    exchange.publish_project(buyer, project.id)
    proposal = submitted_proposal(exchange, vendor, project.id)

    reminder = exchange.tick()
    assert reminder.expiring_ids == [project.id]
    assert reminder.expired_ids == []
    assert NotificationType.PROJECT_EXPIRING in types_for(exchange, vendor.user_id)

    test_time.advance_days(3)
    swept = reopen().tick()
    assert swept.expired_ids == [project.id]
    assert reopen().tick().expired_ids == []

    expired = exchange.get_project(project.id)
    assert expired.status == ProjectStatus.EXPIRED
    assert exchange.search_index.get(exchange.policy.projects_index, project.id)["status"] == "expired"
    with pytest.raises(InvalidTransition):
        exchange.award_project(buyer, project.id, proposal.id)


def test_award_race_across_processes(exchange, reopen, buyer, vendor, second_vendor):
    """The second process to award sees the first one's decision"""
    project = exchange.create_project(buyer, project_command())
    exchange.publish_project(buyer, project.id)
    first = submitted_proposal(exchange, vendor, project.id)
    second = submitted_proposal(exchange, second_vendor, project.id)

    exchange.award_project(buyer, project.id, first.id)
    with pytest.raises(InvalidTransition):
        reopen().award_project(buyer, project.id, second.id)

    assert exchange.get_proposal(first.id).status == ProposalStatus.ACCEPTED
    assert exchange.get_proposal(second.id).status == ProposalStatus.REJECTED


def test_catalog_sell_down_and_restock(exchange, reopen, vendor):
    product = exchange.create_product(vendor, product_command())

    assert exchange.quote(product.id, 600).unit_price == 6
    sold = exchange.adjust_inventory(vendor, product.id, {"delta": 45, "operation": "subtract"})
    assert sold.availability.status == AvailabilityStatus.LIMITED_STOCK
    sold_out = exchange.adjust_inventory(vendor, product.id, {"delta": 5, "operation": "subtract"})
    assert sold_out.availability.status == AvailabilityStatus.OUT_OF_STOCK

    restocked = reopen().adjust_inventory(vendor, product.id, {"delta": 200, "operation": "add"})

    assert restocked.availability.quantity.available == 200
    assert restocked.availability.status == AvailabilityStatus.IN_STOCK
    assert restocked.revision == 4


def test_reindex_after_index_loss(exchange, reopen, buyer, vendor, second_vendor):
    for _ in range(3):
        exchange.publish_project(buyer, exchange.create_project(buyer, project_command()).id)
    exchange.upsert_profile(vendor, {"company_name": "Molino Rossi", "country": "IT"})
    exchange.upsert_profile(second_vendor, {"company_name": "Hellas Grain", "country": "GR"})
    exchange.search_index.delete_index(exchange.policy.projects_index)
    exchange.search_index.delete_index(exchange.policy.suppliers_index)

    totals = reopen().reindex()

    assert totals == {
        exchange.policy.projects_index: 3,
        exchange.policy.suppliers_index: 2,
    }
