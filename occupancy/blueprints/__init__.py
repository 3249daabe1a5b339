"""
Occupancy Transition Service
Blueprint registry and shared error mapping.
"""

import logging

from occupancy.core.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFoundError,
    RecipientResolutionError,
    ValidationError,
)
from occupancy.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_core_error_handlers(bp):
    """Map the service exception hierarchy onto standard JSON errors for ``bp``."""

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(InvalidTransitionError)
    def _handle_invalid_transition(error: InvalidTransitionError):
        return api_error(
            E.CONFLICT_STATE,
            str(error),
            details={
                "current_status": error.current_status,
                "requested_status": error.requested_status,
                "reason": error.reason,
            },
        )

    @bp.errorhandler(ConcurrentModificationError)
    def _handle_concurrent(error: ConcurrentModificationError):
        logger.info("Concurrent modification rejected: %s", error)
        return api_error(E.CONFLICT_CONCURRENT, str(error))

    @bp.errorhandler(RecipientResolutionError)
    def _handle_no_recipients(error: RecipientResolutionError):
        return api_error(E.NOT_FOUND, str(error), details={"reason": error.code})

    return bp
