"""
Notification stream

The lifecycle engine decides *that* someone is notified and *what* they are
told; delivery (email, push) is decided downstream from the recipient's
preferences. Notifications land in an outbox and are never deduplicated here.

Fun fact: The outbox pattern gets its name from the physical out-tray on an
office desk - you drop the letter in, and the mail room takes it from there.
"""

import json
import sqlite3
from collections.abc import Mapping
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Protocol

from pydantic import BaseModel, Field

from foodxchange.kernel.errors import EntityNotFound
from foodxchange.kernel.ids import generate_id
from foodxchange.kernel.metrics import notifications_enqueued_total
from foodxchange.kernel.retry import retry_on_transient_error
from foodxchange.kernel.store import DATETIME_FORMAT, encode_document
from foodxchange.kernel.time import RealTimeProvider, TimeProvider

_transient = retry_on_transient_error(exceptions=(sqlite3.OperationalError,))


class NotificationType(str, Enum):
    PROJECT_INVITATION = "project_invitation"
    PROPOSAL_RECEIVED = "proposal_received"
    PROPOSAL_ACCEPTED = "proposal_accepted"
    PROPOSAL_REJECTED = "proposal_rejected"
    PROJECT_AWARDED = "project_awarded"
    PROJECT_CANCELLED = "project_cancelled"
    MESSAGE_RECEIVED = "message_received"
    PROJECT_EXPIRING = "project_expiring"
    REVIEW_RECEIVED = "review_received"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class NotificationStatus(str, Enum):
    UNREAD = "unread"
    READ = "read"
    ARCHIVED = "archived"


class Notification(BaseModel):
    id: str
    recipient_id: str
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    status: NotificationStatus = NotificationStatus.UNREAD
    created_at: datetime
    read_at: datetime | None = None


# (title, message) templates per type; formatted with the event context
TEMPLATES: dict[NotificationType, tuple[str, str]] = {
    NotificationType.PROJECT_INVITATION: (
        "Invitation: {title}",
        "You have been invited to submit a proposal for {title}.",
    ),
    NotificationType.PROPOSAL_RECEIVED: (
        "New Proposal: {title}",
        "A vendor submitted a proposal of {currency} {total_price} for {title}.",
    ),
    NotificationType.PROPOSAL_ACCEPTED: (
        "Proposal Accepted: {title}",
        "Your proposal {proposal_id} was accepted. The buyer will contact you to finalize details.",
    ),
    NotificationType.PROPOSAL_REJECTED: (
        "Proposal Not Selected: {title}",
        "Your proposal {proposal_id} was not selected.",
    ),
    NotificationType.PROJECT_AWARDED: (
        "Project Awarded: {title}",
        "{title} was awarded to proposal {proposal_id} for {contract_value}.",
    ),
    NotificationType.PROJECT_CANCELLED: (
        "Project Cancelled: {title}",
        "The buyer cancelled {title}.",
    ),
    NotificationType.MESSAGE_RECEIVED: (
        "New Message: {title}",
        "You have a new message about proposal {proposal_id}.",
    ),
    NotificationType.PROJECT_EXPIRING: (
        "Project Expiring Soon: {title}",
        "{title} expires in {days_left} days.",
    ),
    NotificationType.REVIEW_RECEIVED: (
        "New Review: {title}",
        "{title} received a {rating}-star review.",
    ),
}


class _SafeDict(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render(notification_type: NotificationType, context: Mapping[str, Any]) -> tuple[str, str]:
    """Title and message for a notification type; unknown placeholders stay as-is"""
    title, message = TEMPLATES[notification_type]
    values = _SafeDict(context)
    return title.format_map(values), message.format_map(values)


class NotificationOutbox(Protocol):
    def enqueue(
        self,
        recipient_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: Mapping[str, Any] | None = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
    ) -> Notification: ...


class SQLiteNotificationOutbox:
    """
    SQLite-backed notification outbox

    Schema:
    - notifications: one row per notification, indexed by (recipient, status)
    """

    def __init__(self, db_path: str | Path, time_provider: TimeProvider | None = None) -> None:
        self.db_path = Path(db_path)
        self.time_provider = time_provider or RealTimeProvider()
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notifications (
                    id TEXT PRIMARY KEY,
                    recipient_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    doc_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_notifications_recipient "
                "ON notifications(recipient_id, status, created_at)"
            )
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _save(self, conn: sqlite3.Connection, notification: Notification) -> None:
        conn.execute(
            """
            INSERT INTO notifications (id, recipient_id, type, status, doc_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status,
                doc_json = excluded.doc_json
            """,
            (
                notification.id,
                notification.recipient_id,
                notification.type.value,
                notification.status.value,
                encode_document(notification.model_dump()),
                notification.created_at.strftime(DATETIME_FORMAT),
            ),
        )

    @_transient
    def enqueue(
        self,
        recipient_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: Mapping[str, Any] | None = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
    ) -> Notification:
        notification = Notification(
            id=generate_id(),
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            data=dict(data or {}),
            priority=priority,
            created_at=self.time_provider.now(),
        )
        with self._connect() as conn:
            self._save(conn, notification)
            conn.commit()
        notifications_enqueued_total.labels(type=notification.type.value).inc()
        return notification

    def list_for(
        self, recipient_id: str, status: NotificationStatus | None = None
    ) -> list[Notification]:
        """A recipient's notifications, newest first"""
        sql = "SELECT doc_json FROM notifications WHERE recipient_id = ?"
        params: list[Any] = [recipient_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        sql += " ORDER BY created_at DESC, rowid DESC"
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Notification.model_validate(json.loads(row["doc_json"])) for row in rows]

    def unread_count(self, recipient_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM notifications WHERE recipient_id = ? AND status = ?",
                (recipient_id, NotificationStatus.UNREAD.value),
            ).fetchone()
        return int(row["n"])

    def mark_as_read(self, notification_id: str, recipient_id: str) -> Notification:
        """
        Raises:
            EntityNotFound: If the recipient has no such notification
        """
        with self._connect() as conn:
            row = conn.execute(
                "SELECT doc_json FROM notifications WHERE id = ? AND recipient_id = ?",
                (notification_id, recipient_id),
            ).fetchone()
            if row is None:
                raise EntityNotFound("notifications", notification_id)
            notification = Notification.model_validate(json.loads(row["doc_json"]))
            updated = notification.model_copy(
                update={
                    "status": NotificationStatus.READ,
                    "read_at": self.time_provider.now(),
                }
            )
            self._save(conn, updated)
            conn.commit()
        return updated

    def mark_all_as_read(self, recipient_id: str) -> int:
        """Returns how many notifications changed"""
        unread = self.list_for(recipient_id, NotificationStatus.UNREAD)
        for notification in unread:
            self.mark_as_read(notification.id, recipient_id)
        return len(unread)
