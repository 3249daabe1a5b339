"""
Service-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and map them to consistent HTTP status codes:

    ValidationError              → 400
    NotFoundError                → 404
    InvalidTransitionError       → 409
    ConcurrentModificationError  → 409 (caller should reload and retry)

Only ValidationError and InvalidTransitionError (and the concurrency/store
failures) stop a state change. Notification-path problems are never raised to
the caller: the dispatcher captures them as RecipientResolutionWarning or
TransportError and reports them on the operator channel.

Usage:
    from occupancy.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="TransitionRequest", resource_id=42)
    raise ValidationError("Missing mandatory fields", details={"email": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "TransitionRequest", "Unit").
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
    """Raised when a submission or amendment fails the request-type policy.

    Raised before anything is persisted, so a failed submission leaves no row
    behind.

    Args:
        message: Human-readable explanation of what failed.
        details: Field-level breakdown; keys are field names, values are
                 error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(Exception):
    """Raised when a status change is not reachable from the current status,
    or the actor type may not perform it. No state changes.
    """

    def __init__(
        self,
        request_ref: str | int | None,
        current: str,
        requested: str,
        actor_type: str | None = None,
        reason: str | None = None,
    ) -> None:
        msg = f"Cannot move request {request_ref} from '{current}' to '{requested}'"
        if actor_type:
            msg += f" as {actor_type}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.request_ref = request_ref
        self.current_status = current
        self.requested_status = requested
        self.actor_type = actor_type
        self.reason = reason


class ConcurrentModificationError(Exception):
    """Raised when another writer changed the request first.

    The caller must reload the request and decide again.
    """

    def __init__(self, request_id: int, expected_version: int | None = None,
                 actual_version: int | None = None) -> None:
        msg = f"TransitionRequest id={request_id} was modified concurrently"
        if expected_version is not None:
            msg += f" (expected version {expected_version}, found {actual_version})"
        super().__init__(msg)
        self.request_id = request_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class RecipientResolutionError(Exception):
    """Raised by the recipient resolver when no configuration exists at any
    scope level ("no-recipients-configured").
    """

    code = "no-recipients-configured"

    def __init__(self, master_community_id, community_id, tower_id=None) -> None:
        super().__init__(
            f"No recipient configuration for master_community={master_community_id}, "
            f"community={community_id}, tower={tower_id}"
        )
        self.master_community_id = master_community_id
        self.community_id = community_id
        self.tower_id = tower_id


class RecipientResolutionWarning(UserWarning):
    """Non-fatal: the transition committed but recipients could not be resolved."""


class TransportError(Exception):
    """Non-fatal: the transport collaborator failed to deliver a notification."""
