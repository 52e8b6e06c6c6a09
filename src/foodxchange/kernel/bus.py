"""
In-process change event bus

Synchronous pub/sub between the exchange façade (publisher) and the
consistency synchronizer (subscriber). A failing subscriber is logged and
counted, never propagated: the entity mutation has already been committed.

Fun fact: This is the "mediator" pattern. Swapping it for a message broker
would not change a line of the lifecycle code.
"""

from collections import defaultdict
from typing import Callable

from foodxchange.kernel.events import ChangeEvent, EventType
from foodxchange.kernel.logging import get_logger
from foodxchange.kernel.metrics import sync_failures_total

logger = get_logger(__name__)


EventHandler = Callable[[ChangeEvent], None]


class InProcessBus:
    """
    Simple synchronous in-process bus

    Handlers subscribe per event type or to every event (``subscribe_all``).
    Handlers run in registration order.
    """

    def __init__(self) -> None:
        self._handlers: defaultdict[EventType, list[EventHandler]] = defaultdict(list)
        self._catch_all: list[EventHandler] = []
        logger.debug("InProcessBus initialized")

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """
        Register a handler for one event type (several per type allowed)

        Args:
            event_type: Event type to handle
            handler: Callable receiving the event
        """
        self._handlers[event_type].append(handler)
        logger.debug(
            "Event handler registered",
            event_type=event_type.value,
            total_handlers=len(self._handlers[event_type]),
        )

    def subscribe_all(self, handler: EventHandler) -> None:
        """Register a handler that receives every event"""
        self._catch_all.append(handler)

    def publish(self, event: ChangeEvent) -> None:
        """
        Publish an event to all registered handlers

        If a handler fails, the others still run (we catch and log).
        """
        handlers = self._catch_all + self._handlers.get(event.event_type, [])

        if not handlers:
            logger.debug(
                "No handlers registered for event type",
                event_type=event.event_type.value,
                event_id=event.event_id,
            )
            return

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                sync_failures_total.labels(sink="bus").inc()
                logger.error(
                    "Event handler failed",
                    event_type=event.event_type.value,
                    event_id=event.event_id,
                    entity_id=event.entity_id,
                    error=str(e),
                    exc_info=True,
                )

    def publish_many(self, events: list[ChangeEvent]) -> None:
        """Publish multiple events in order"""
        for event in events:
            self.publish(event)

    def get_event_types(self) -> list[EventType]:
        """Event types with at least one dedicated subscriber"""
        return list(self._handlers.keys())

    def clear(self) -> None:
        """Remove all handlers (useful for testing)"""
        self._handlers.clear()
        self._catch_all.clear()
