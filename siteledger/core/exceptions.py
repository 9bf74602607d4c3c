"""
Engine-wide exception hierarchy.

Services raise these types; the app factory registers one handler per type
and maps it to a consistent JSON error body and HTTP status. Every service
rolls its session back before raising, so a caller that sees any of these
can rely on the entity being exactly as it was before the call.

Usage:
    from siteledger.core.exceptions import NotFoundError, OverBudgetError

    raise NotFoundError(resource="BoqItem", resource_id=42)
    raise OverBudgetError(requested=Decimal("25"), available=Decimal("20"))
"""

from decimal import Decimal


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "BoqItem", "DailyLog").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness rule."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class PermissionDenied(Exception):
    """Raised when an actor lacks the capability for an operation."""

    def __init__(self, actor_id, capability: str, project_id: int | None = None) -> None:
        scope = f" in project {project_id}" if project_id is not None else ""
        super().__init__(f"Actor {actor_id} is not allowed to '{capability}'{scope}")
        self.actor_id = actor_id
        self.capability = capability
        self.project_id = project_id


class OverBudgetError(Exception):
    """Raised by a reservation that would push a BOQ item past its budget.

    The only error a field actor sees at submission time; recoverable by
    reducing the quantity to at most ``available``.
    """

    def __init__(self, requested: Decimal, available: Decimal, boq_item_id: int | None = None) -> None:
        self.requested = requested
        self.available = available
        self.boq_item_id = boq_item_id
        super().__init__(f"Requested {requested} exceeds available {available}")


class InvalidTransitionError(Exception):
    """Raised when a state-machine operation is not allowed from the current state."""

    def __init__(self, entity: str, entity_id, from_state: str, attempted: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.from_state = from_state
        self.attempted = attempted
        super().__init__(f"Cannot '{attempted}' {entity} {entity_id} from status '{from_state}'")


class MissingRequiredEvidenceError(Exception):
    """Raised when a transition is attempted without its mandatory evidence."""

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f"Evidence '{field}' is required")


class InvalidTokenError(Exception):
    """Raised when a reservation token is unknown or already consumed the other way.

    Callers treat this as an integrity fault: it cannot happen under correct
    sequencing of submit/approve/reject.
    """

    def __init__(self, token: str, reason: str) -> None:
        self.token = token
        self.reason = reason
        super().__init__(f"Reservation token {token!r} is invalid: {reason}")


class BusyError(Exception):
    """Raised when a contended resource could not be locked in time. Retryable."""

    def __init__(self, resource: str, retry_after: float = 1.0) -> None:
        self.resource = resource
        self.retry_after = retry_after
        super().__init__(f"{resource} is busy, retry later")
