"""
TickEngine - Periodic maintenance orchestrator

The TickEngine runs the scheduled sweeps the marketplace relies on between
user requests:

1. Deadline enforcement: active projects past their deadline become expired
2. Expiring-soon reminders: active projects whose deadline falls within the
   policy window get a ProjectExpiring event (buyer and bidders are notified)

Each change is announced on the bus so the search index follows.

Fun fact: cron, the scheduler most of these ticks end up running under,
first shipped with Version 7 Unix in 1979.
"""

import time
from datetime import datetime

from foodxchange.kernel.bus import InProcessBus
from foodxchange.kernel.events import ChangeEvent, EventType, create_event
from foodxchange.kernel.ids import generate_id
from foodxchange.kernel.logging import LogOperation, get_logger
from foodxchange.kernel.metrics import tick_duration_seconds
from foodxchange.kernel.policy import MarketplacePolicy
from foodxchange.kernel.store import SQLiteEntityStore
from foodxchange.kernel.time import TimeProvider
from foodxchange.project.lifecycle import PROJECTS, expire_due, find_expiring
from foodxchange.proposal.models import RELEASED_STATUSES

logger = get_logger(__name__)

PROPOSALS = "proposals"


class TickResult:
    """
    Result of a tick

    Contains the projects touched and the events published.
    """

    def __init__(
        self,
        tick_id: str,
        tick_at: datetime,
        expired_ids: list[str],
        expiring_ids: list[str],
        events: list[ChangeEvent],
    ):
        self.tick_id = tick_id
        self.tick_at = tick_at
        self.expired_ids = expired_ids
        self.expiring_ids = expiring_ids
        self.events = events

    def summary(self) -> str:
        """Human-readable summary of tick result"""
        return " | ".join(
            [
                f"Tick {self.tick_id} at {self.tick_at}",
                f"Expired: {len(self.expired_ids)}",
                f"Expiring soon: {len(self.expiring_ids)}",
            ]
        )


class TickEngine:
    """
    Orchestrates the periodic sweeps

    Running a tick twice at the same instant expires nothing the second time;
    expiring-soon reminders are sent on every tick that sees the project in
    the window.
    """

    def __init__(
        self,
        store: SQLiteEntityStore,
        bus: InProcessBus,
        time_provider: TimeProvider,
        policy: MarketplacePolicy,
    ):
        self.store = store
        self.bus = bus
        self.time_provider = time_provider
        self.policy = policy

    def tick(self) -> TickResult:
        """Execute a single tick"""
        now = self.time_provider.now()
        tick_id = generate_id()
        started = time.perf_counter()

        with LogOperation(logger, "tick", tick_id=tick_id):
            expired_ids = expire_due(self.store, now)
            events = [self._expired_event(project_id, now) for project_id in expired_ids]

            expiring = find_expiring(self.store, now, self.policy.expiring_soon_days)
            expiring_ids = [project.id for project in expiring]
            for project in expiring:
                events.append(
                    create_event(
                        event_id=generate_id(),
                        event_type=EventType.PROJECT_EXPIRING,
                        entity_type="project",
                        entity_id=project.id,
                        occurred_at=now,
                        after=self.store.find_by_id(PROJECTS, project.id),
                        payload={
                            "days_left": project.days_until_deadline(now),
                            "vendor_ids": self._bidding_vendors(project.id),
                        },
                    )
                )

            self.bus.publish_many(events)

        tick_duration_seconds.observe(time.perf_counter() - started)
        result = TickResult(tick_id, now, expired_ids, expiring_ids, events)
        logger.info(
            "Tick finished",
            tick_id=tick_id,
            expired=len(expired_ids),
            expiring=len(expiring_ids),
        )
        return result

    def _expired_event(self, project_id: str, now: datetime) -> ChangeEvent:
        return create_event(
            event_id=generate_id(),
            event_type=EventType.PROJECT_EXPIRED,
            entity_type="project",
            entity_id=project_id,
            occurred_at=now,
            after=self.store.find_by_id(PROJECTS, project_id),
        )

    def _bidding_vendors(self, project_id: str) -> list[str]:
        docs = self.store.find(
            PROPOSALS,
            {
                "project_id": project_id,
                "status": {"$ne": "draft"},
            },
        )
        released = {s.value for s in RELEASED_STATUSES}
        return sorted({d["vendor_id"] for d in docs if d["status"] not in released})
