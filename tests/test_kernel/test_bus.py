"""
Tests for the in-process change event bus
"""

from datetime import datetime, timezone

from foodxchange.kernel.bus import InProcessBus
from foodxchange.kernel.events import ChangeEvent, EventType, create_event


def make_event(event_type: EventType = EventType.PROJECT_CREATED) -> ChangeEvent:
    return create_event(
        event_id="evt-1",
        event_type=event_type,
        entity_type="project",
        entity_id="PRJ-1",
        occurred_at=datetime(2025, 1, 15, tzinfo=timezone.utc),
        after={"id": "PRJ-1"},
    )


def test_typed_subscriber_receives_only_its_type():
    bus = InProcessBus()
    received = []
    bus.subscribe(EventType.PROJECT_PUBLISHED, received.append)

    bus.publish(make_event(EventType.PROJECT_CREATED))
    bus.publish(make_event(EventType.PROJECT_PUBLISHED))

    assert [e.event_type for e in received] == [EventType.PROJECT_PUBLISHED]
    assert bus.get_event_types() == [EventType.PROJECT_PUBLISHED]


def test_catch_all_subscriber_runs_first():
    bus = InProcessBus()
    calls = []
    bus.subscribe(EventType.PROJECT_CREATED, lambda e: calls.append("typed"))
    bus.subscribe_all(lambda e: calls.append("all"))

    bus.publish(make_event())

    assert calls == ["all", "typed"]


def test_failing_handler_does_not_stop_others():
    bus = InProcessBus()
    received = []

    def broken(event: ChangeEvent) -> None:
        raise RuntimeError("sink down")

    bus.subscribe_all(broken)
    bus.subscribe_all(received.append)

    bus.publish(make_event())

    assert len(received) == 1


def test_publish_many_keeps_order():
    bus = InProcessBus()
    received = []
    bus.subscribe_all(received.append)

    bus.publish_many(
        [make_event(EventType.PROJECT_CREATED), make_event(EventType.PROJECT_PUBLISHED)]
    )

    assert [e.event_type for e in received] == [
        EventType.PROJECT_CREATED,
        EventType.PROJECT_PUBLISHED,
    ]


def test_clear_removes_handlers():
    bus = InProcessBus()
    received = []
    bus.subscribe_all(received.append)
    bus.clear()

    bus.publish(make_event())

    assert received == []


def test_create_event_defaults_payload():
    event = make_event()

    assert event.payload == {}
    assert event.before is None
    assert event.actor_id is None
