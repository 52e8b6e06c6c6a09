"""
Custom exceptions for FoodXchange

A small, closed error taxonomy for the lifecycle engine. Every error carries a
stable ``category`` so the boundary layer can map it to a response class
(not-found, forbidden, conflict, bad-request) without parsing messages.

Fun fact: HTTP 409 "Conflict" was added in RFC 2068 (1997) - long before most
marketplaces had to worry about two buyers clicking "award" at the same time.
"""

from typing import Any


class ExchangeError(Exception):
    """Base exception for all FoodXchange errors"""

    category = "internal"


# ============================================================================
# Lifecycle errors
# ============================================================================


class InvalidTransition(ExchangeError):
    """Raised when a status change is not permitted from the current state"""

    category = "conflict"

    def __init__(
        self, entity_type: str, entity_id: str, from_status: str, to_status: str
    ) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"{entity_type} {entity_id} cannot move from {from_status} to {to_status}"
        )


class PermissionDenied(ExchangeError):
    """Raised when the actor lacks the role, ownership or invitation required"""

    category = "forbidden"

    def __init__(self, actor_id: str | None, action: str, reason: str = "") -> None:
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        message = f"Actor {actor_id} may not {action}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class NotFound(ExchangeError):
    """Raised when a referenced entity is absent"""

    category = "not_found"


class EntityNotFound(NotFound):
    """Raised by the entity store when an identifier does not resolve"""

    def __init__(self, collection: str, entity_id: str) -> None:
        self.collection = collection
        self.entity_id = entity_id
        super().__init__(f"{collection} {entity_id} not found")


class DuplicateProposal(ExchangeError):
    """Raised when a vendor already holds a live proposal for the project"""

    category = "conflict"

    def __init__(self, project_id: str, vendor_id: str) -> None:
        self.project_id = project_id
        self.vendor_id = vendor_id
        super().__init__(
            f"Vendor {vendor_id} already has a proposal for project {project_id}"
        )


class ValidationFailure(ExchangeError):
    """Raised on malformed input"""

    category = "bad_request"

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message)


class MissingPriceValidity(ValidationFailure):
    """Raised when a proposal is submitted without a price validity date"""

    def __init__(self, proposal_id: str) -> None:
        self.proposal_id = proposal_id
        super().__init__(f"Proposal {proposal_id} has no price validity date")


class PriceValidityLapsed(ValidationFailure):
    """Raised when a proposal's price validity is already in the past at submission"""

    def __init__(self, proposal_id: str, price_validity: str) -> None:
        self.proposal_id = proposal_id
        self.price_validity = price_validity
        super().__init__(
            f"Proposal {proposal_id} price validity {price_validity} is before submission"
        )


class Conflict(ExchangeError):
    """Raised when a concurrent write lost a conditional update"""

    category = "conflict"


class ConditionalUpdateFailed(Conflict):
    """
    Raised when the stored record no longer matches the expected state

    The caller should reload and decide whether to retry.
    """

    def __init__(
        self,
        collection: str,
        entity_id: str,
        expected: dict[str, Any],
        actual: dict[str, Any],
    ) -> None:
        self.collection = collection
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{collection} {entity_id} changed concurrently: "
            f"expected {expected}, found {actual}"
        )


# ============================================================================
# Infrastructure errors
# ============================================================================


class EntityStoreError(ExchangeError):
    """Base class for entity store failures"""

    pass


class UniqueConstraintViolation(EntityStoreError):
    """Raised when a write would duplicate a collection's unique key"""

    category = "conflict"

    def __init__(self, collection: str, unique_key: str) -> None:
        self.collection = collection
        self.unique_key = unique_key
        super().__init__(f"{collection} already holds a record keyed {unique_key}")


class SearchIndexError(ExchangeError):
    """Raised when the search index rejects an operation"""

    pass


def error_category(exc: BaseException) -> str:
    """
    Map an exception to a stable boundary category

    Returns one of: not_found, forbidden, conflict, bad_request, internal.
    """
    if isinstance(exc, ExchangeError):
        return exc.category
    return "internal"
