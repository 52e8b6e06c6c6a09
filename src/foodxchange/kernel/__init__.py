"""
Kernel - Core persistence and change-propagation infrastructure

The kernel provides the machinery every domain module builds upon: a
document store with conditional writes, change events and the bus that
carries them, injectable clocks and ids, and the error taxonomy.

Fun fact: Optimistic concurrency control was described by Kung and Robinson
in 1981. The revision counter on every stored document is the same idea.
"""

from foodxchange.kernel.errors import (
    ConditionalUpdateFailed,
    DuplicateProposal,
    EntityNotFound,
    ExchangeError,
    InvalidTransition,
    PermissionDenied,
    ValidationFailure,
)
from foodxchange.kernel.events import ChangeEvent, EventType
from foodxchange.kernel.ids import generate_id, generate_reference
from foodxchange.kernel.time import RealTimeProvider, TestTimeProvider, TimeProvider

__all__ = [
    # IDs
    "generate_id",
    "generate_reference",
    # Time
    "TimeProvider",
    "RealTimeProvider",
    "TestTimeProvider",
    # Events
    "ChangeEvent",
    "EventType",
    # Errors
    "ExchangeError",
    "InvalidTransition",
    "PermissionDenied",
    "EntityNotFound",
    "DuplicateProposal",
    "ValidationFailure",
    "ConditionalUpdateFailed",
]
