"""
Tests for the TickEngine

The tick runs the deadline sweep and the expiring-soon reminders. Sweeps
are idempotent; reminders go out on every tick that sees the project in the
reminder window.
"""

from datetime import datetime, timedelta, timezone

from foodxchange.kernel.events import EventType
from foodxchange.project.models import ProjectStatus
from tests.helpers import NOW, active_project, project_command, submitted_proposal


def test_tick_with_nothing_to_do(exchange):
    result = exchange.tick()

    assert result.expired_ids == []
    assert result.expiring_ids == []
    assert result.events == []
    assert "Expired: 0" in result.summary()


def test_tick_expires_overdue_projects(exchange, buyer, test_time):
    project = active_project(exchange, buyer, deadline=NOW + timedelta(days=5))
    test_time.advance_days(6)

    result = exchange.tick()

    assert result.expired_ids == [project.id]
    stored = exchange.store.find_by_id("projects", project.id)
    assert stored["status"] == ProjectStatus.EXPIRED.value
    assert stored["history"][-1]["action"] == "auto_expired"
    assert stored["history"][-1]["changed_by"] == "system"
    assert [e.event_type for e in result.events] == [EventType.PROJECT_EXPIRED]


def test_tick_expiry_is_idempotent(exchange, buyer, test_time):
    active_project(exchange, buyer, deadline=NOW + timedelta(days=5))
    test_time.advance_days(6)

    first = exchange.tick()
    second = exchange.tick()

    assert len(first.expired_ids) == 1
    assert second.expired_ids == []


def test_tick_leaves_non_active_projects_alone(exchange, buyer, test_time):
    draft = exchange.create_project(buyer, project_command(deadline=NOW + timedelta(days=1)))
    test_time.advance_days(2)

    result = exchange.tick()

    assert result.expired_ids == []
    assert exchange.store.find_by_id("projects", draft.id)["status"] == "draft"


def test_tick_reports_expiring_projects(exchange, buyer, vendor, test_time):
    soon = active_project(exchange, buyer, deadline=NOW + timedelta(days=2))
    active_project(exchange, buyer, deadline=NOW + timedelta(days=20))
    submitted_proposal(exchange, vendor, soon.id)

    result = exchange.tick()

    assert result.expiring_ids == [soon.id]
    expiring = [e for e in result.events if e.event_type == EventType.PROJECT_EXPIRING]
    assert len(expiring) == 1
    assert expiring[0].payload["days_left"] == 2
    assert expiring[0].payload["vendor_ids"] == [vendor.user_id]


def test_tick_expiring_notifies_buyer_and_bidders(exchange, buyer, vendor):
    soon = active_project(exchange, buyer, deadline=NOW + timedelta(days=1))
    submitted_proposal(exchange, vendor, soon.id)

    exchange.tick()

    buyer_types = [n.type.value for n in exchange.notifications_for(buyer.user_id)]
    vendor_types = [n.type.value for n in exchange.notifications_for(vendor.user_id)]
    assert "project_expiring" in buyer_types
    assert "project_expiring" in vendor_types


def test_tick_updates_search_index_for_expired(exchange, buyer, test_time):
    project = active_project(exchange, buyer, deadline=NOW + timedelta(days=1))
    test_time.set_time(datetime(2025, 2, 1, tzinfo=timezone.utc))

    exchange.tick()

    indexed = exchange.search_index.get(exchange.policy.projects_index, project.id)
    assert indexed["status"] == "expired"
