"""
Sync Module - Consistency between the entity store and its downstream sinks

Committed changes flow from the bus into the search index and the
notification outbox. Sinks are eventually consistent with the store.
"""

from foodxchange.sync.notifications import NotificationType, SQLiteNotificationOutbox
from foodxchange.sync.search_index import SQLiteSearchIndex
from foodxchange.sync.synchronizer import ConsistencySynchronizer

__all__ = [
    "ConsistencySynchronizer",
    "NotificationType",
    "SQLiteNotificationOutbox",
    "SQLiteSearchIndex",
]
