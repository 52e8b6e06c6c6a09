"""
Consistency Synchronizer

Subscribes to committed change events and propagates them to the search
index and the notification outbox. Delivery is at-least-once: index upserts
are idempotent by id, notifications are not deduplicated.

A failing sink is logged and counted; it never undoes the entity write that
produced the event, and one sink failing does not stop the other.

Routing:
    project change            → upsert foodxchange_projects
    vendor profile change     → upsert (or drop) foodxchange_suppliers
    ProjectPublished          → project_invitation to pending invitees
    VendorInvited (published) → project_invitation to the invitee
    ProposalSubmitted         → proposal_received to the buyer
    ProposalAccepted          → proposal_accepted to the vendor
    ProposalRejected          → proposal_rejected to the vendor
    ProjectAwarded            → project_awarded to the buyer
    ProjectCancelled          → project_cancelled to every bidding vendor
    ProjectExpiring           → project_expiring to the buyer and bidders
    ProposalMessageAdded      → message_received to the other party
"""

from collections.abc import Callable, Iterable, Mapping
from typing import Any

from foodxchange.kernel.bus import InProcessBus
from foodxchange.kernel.events import ChangeEvent, EventType
from foodxchange.kernel.logging import LogOperation, get_logger
from foodxchange.kernel.metrics import sync_failures_total
from foodxchange.kernel.policy import MarketplacePolicy, default_policy
from foodxchange.kernel.store import SQLiteEntityStore
from foodxchange.sync.notifications import (
    NotificationOutbox,
    NotificationPriority,
    NotificationType,
    render,
)
from foodxchange.sync.projections import (
    PROJECTS_SCHEMA,
    SUPPLIERS_SCHEMA,
    project_projection,
    supplier_projection,
)
from foodxchange.sync.search_index import SearchIndex

logger = get_logger(__name__)

Recipient = tuple[str, NotificationType, NotificationPriority]


class ConsistencySynchronizer:
    """
    Event subscriber keeping the index and the notification stream in step

    Args:
        index: Search index sink
        outbox: Notification sink
        policy: Supplies index names and the reindex batch size
    """

    def __init__(
        self,
        index: SearchIndex,
        outbox: NotificationOutbox,
        policy: MarketplacePolicy = default_policy,
    ) -> None:
        self.index = index
        self.outbox = outbox
        self.policy = policy
        self._routes: dict[EventType, Callable[[ChangeEvent], list[Recipient]]] = {
            EventType.PROJECT_PUBLISHED: self._on_published,
            EventType.VENDOR_INVITED: self._on_vendor_invited,
            EventType.PROPOSAL_SUBMITTED: self._on_proposal_submitted,
            EventType.PROPOSAL_ACCEPTED: self._on_proposal_decided,
            EventType.PROPOSAL_REJECTED: self._on_proposal_decided,
            EventType.PROJECT_AWARDED: self._on_awarded,
            EventType.PROJECT_CANCELLED: self._on_cancelled,
            EventType.PROJECT_EXPIRING: self._on_expiring,
            EventType.PROPOSAL_MESSAGE_ADDED: self._on_message,
            EventType.PRODUCT_REVIEWED: self._on_reviewed,
        }

    def attach(self, bus: InProcessBus) -> None:
        """Subscribe to every event on the bus"""
        bus.subscribe_all(self.handle)

    def handle(self, event: ChangeEvent) -> None:
        """Propagate one committed change to both sinks"""
        self._sync_index(event)
        self._notify(event)

    # ------------------------------------------------------------------
    # Search index
    # ------------------------------------------------------------------

    def _sync_index(self, event: ChangeEvent) -> None:
        if event.after is None:
            return
        try:
            if event.entity_type == "project":
                self.index.upsert(
                    self.policy.projects_index,
                    event.entity_id,
                    project_projection(event.after),
                )
            elif event.entity_type == "profile":
                projection = supplier_projection(event.after)
                if projection is None:
                    self.index.delete(self.policy.suppliers_index, event.entity_id)
                else:
                    self.index.upsert(
                        self.policy.suppliers_index, event.entity_id, projection
                    )
        except Exception as e:
            sync_failures_total.labels(sink="search_index").inc()
            logger.error(
                "Search index update failed",
                event_type=event.event_type.value,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                error=str(e),
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _notify(self, event: ChangeEvent) -> None:
        route = self._routes.get(event.event_type)
        if route is None:
            return
        context = self._context(event)
        for recipient_id, notification_type, priority in route(event):
            try:
                title, message = render(notification_type, context)
                self.outbox.enqueue(
                    recipient_id,
                    notification_type,
                    title,
                    message,
                    data=self._data(event),
                    priority=priority,
                )
            except Exception as e:
                sync_failures_total.labels(sink="notifications").inc()
                logger.error(
                    "Notification enqueue failed",
                    event_type=event.event_type.value,
                    notification_type=notification_type.value,
                    recipient_id=recipient_id,
                    error=str(e),
                    exc_info=True,
                )

    @staticmethod
    def _context(event: ChangeEvent) -> dict[str, Any]:
        after = event.after or {}
        pricing = after.get("pricing") or {}
        awarded = after.get("awarded_to") or {}
        return {
            "title": event.payload.get("project_title") or after.get("title") or after.get("name", ""),
            "project_id": event.payload.get("project_id") or after.get("project_id") or after.get("id"),
            "proposal_id": awarded.get("proposal_id") or (
                event.entity_id if event.entity_type == "proposal" else ""
            ),
            "currency": pricing.get("currency", ""),
            "total_price": pricing.get("total_price", ""),
            "contract_value": awarded.get("contract_value", ""),
            "days_left": event.payload.get("days_left", ""),
            "rating": event.payload.get("rating", ""),
        }

    @staticmethod
    def _data(event: ChangeEvent) -> dict[str, Any]:
        data: dict[str, Any] = {"event_id": event.event_id}
        if event.entity_type == "project":
            data["project_id"] = event.entity_id
        elif event.entity_type == "proposal":
            data["proposal_id"] = event.entity_id
            data["project_id"] = (event.after or {}).get("project_id")
        elif event.entity_type == "product":
            data["product_id"] = event.entity_id
        if event.actor_id:
            data["sender_id"] = event.actor_id
        return data

    @staticmethod
    def _pending_invitees(project: Mapping[str, Any]) -> list[str]:
        return [
            invitation["vendor_id"]
            for invitation in project.get("invited_vendors", [])
            if invitation.get("status") == "pending"
        ]

    def _on_published(self, event: ChangeEvent) -> list[Recipient]:
        return [
            (vendor_id, NotificationType.PROJECT_INVITATION, NotificationPriority.MEDIUM)
            for vendor_id in self._pending_invitees(event.after or {})
        ]

    def _on_vendor_invited(self, event: ChangeEvent) -> list[Recipient]:
        # Invitations made while drafting go out on publish
        if (event.after or {}).get("status") == "draft":
            return []
        vendor_id = event.payload.get("vendor_id")
        if not vendor_id:
            return []
        return [(vendor_id, NotificationType.PROJECT_INVITATION, NotificationPriority.MEDIUM)]

    def _on_proposal_submitted(self, event: ChangeEvent) -> list[Recipient]:
        buyer_id = event.payload.get("buyer_id")
        if not buyer_id:
            return []
        return [(buyer_id, NotificationType.PROPOSAL_RECEIVED, NotificationPriority.HIGH)]

    def _on_proposal_decided(self, event: ChangeEvent) -> list[Recipient]:
        vendor_id = (event.after or {}).get("vendor_id")
        if not vendor_id:
            return []
        if event.event_type == EventType.PROPOSAL_ACCEPTED:
            return [(vendor_id, NotificationType.PROPOSAL_ACCEPTED, NotificationPriority.HIGH)]
        return [(vendor_id, NotificationType.PROPOSAL_REJECTED, NotificationPriority.MEDIUM)]

    def _on_awarded(self, event: ChangeEvent) -> list[Recipient]:
        buyer_id = (event.after or {}).get("buyer_id")
        if not buyer_id:
            return []
        return [(buyer_id, NotificationType.PROJECT_AWARDED, NotificationPriority.MEDIUM)]

    def _on_cancelled(self, event: ChangeEvent) -> list[Recipient]:
        return [
            (vendor_id, NotificationType.PROJECT_CANCELLED, NotificationPriority.MEDIUM)
            for vendor_id in event.payload.get("vendor_ids", [])
        ]

    def _on_expiring(self, event: ChangeEvent) -> list[Recipient]:
        recipients = [(event.after or {}).get("buyer_id")] + list(
            event.payload.get("vendor_ids", [])
        )
        return [
            (recipient, NotificationType.PROJECT_EXPIRING, NotificationPriority.HIGH)
            for recipient in recipients
            if recipient
        ]

    def _on_message(self, event: ChangeEvent) -> list[Recipient]:
        recipient_id = event.payload.get("recipient_id")
        if not recipient_id:
            return []
        return [(recipient_id, NotificationType.MESSAGE_RECEIVED, NotificationPriority.MEDIUM)]

    def _on_reviewed(self, event: ChangeEvent) -> list[Recipient]:
        supplier_id = (event.after or {}).get("supplier_id")
        if not supplier_id:
            return []
        return [(supplier_id, NotificationType.REVIEW_RECEIVED, NotificationPriority.LOW)]

    # ------------------------------------------------------------------
    # Full reindex
    # ------------------------------------------------------------------

    def reindex_all(self, store: SQLiteEntityStore) -> dict[str, int]:
        """
        Rebuild both indices from the entity store

        Each index is dropped, recreated and refilled in batches.

        Returns:
            Documents indexed per index name
        """
        plan: Iterable[tuple[str, str, dict[str, Any], Callable[[Mapping[str, Any]], dict[str, Any] | None]]] = (
            (self.policy.projects_index, "projects", PROJECTS_SCHEMA, project_projection),
            (self.policy.suppliers_index, "profiles", SUPPLIERS_SCHEMA, supplier_projection),
        )
        totals: dict[str, int] = {}
        for index_name, collection, schema, transform in plan:
            with LogOperation(logger, "reindex", index=index_name):
                self.index.delete_index(index_name)
                self.index.create_index(index_name, schema)
                totals[index_name] = self._index_collection(
                    store, index_name, collection, transform
                )
        return totals

    def _index_collection(
        self,
        store: SQLiteEntityStore,
        index_name: str,
        collection: str,
        transform: Callable[[Mapping[str, Any]], dict[str, Any] | None],
    ) -> int:
        batch_size = self.policy.reindex_batch_size
        skip = 0
        indexed = 0
        while True:
            docs = store.find(collection, limit=batch_size, skip=skip)
            if not docs:
                break
            items = [
                (doc["id"], projection)
                for doc in docs
                if (projection := transform(doc)) is not None
            ]
            indexed += self.index.bulk_upsert(index_name, items)
            skip += batch_size
            logger.debug("Indexed batch", index=index_name, processed=skip)
        return indexed
