"""
Custom exception classes for the CPV placement engine.

Operations that are not legal for the current state of an offer or channel
raise immediately with enough context to tell the caller what happened.
Soft outcomes of offer creation (paused channel, filled limit, ...) are
*not* exceptions; they are returned as ``SkipReason`` values.

Hierarchy:
    Exception
    +-- PlacementError (base for all engine errors)
    |   +-- NotFoundError
    |   +-- IllegalStateError
    |   +-- DeliveryError
    +-- ValidationError (ValueError)
    +-- StoreError
    +-- ConfigurationError
    +-- RetryExhaustedError
"""

from typing import Optional


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class PlacementError(Exception):
    """Base exception for all placement-engine errors."""

    pass


# =============================================================================
# CORE EXCEPTIONS
# =============================================================================


class ValidationError(ValueError):
    """Raised when input validation fails (window, mode, schedule, limit)."""

    pass


class StoreError(Exception):
    """Raised when a snapshot cannot be loaded or saved."""

    pass


class ConfigurationError(Exception):
    """Raised when system configuration is invalid."""

    pass


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        operation: Name of the operation that was retried.
        attempts: Total number of attempts made.
        last_error: The last exception raised before giving up.
    """

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts. "
            f"Last error: {last_error}"
        )


# =============================================================================
# ENGINE EXCEPTIONS
# =============================================================================


class NotFoundError(PlacementError):
    """Raised when an offer, channel or blogger id is unknown.

    Attributes:
        kind: Entity kind (``"offer"``, ``"channel"``, ``"blogger"``).
        entity_id: The identifier that was looked up.
    """

    def __init__(self, kind: str, entity_id: int):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found")


class IllegalStateError(PlacementError):
    """Raised when an action is not legal for the entity's current status.

    No mutation has happened when this is raised.

    Attributes:
        entity_id: Offer or channel id the action targeted.
        status: Status (or mode) the entity was in.
        action: Name of the rejected action.
    """

    def __init__(self, entity_id: int, status: str, action: str, detail: Optional[str] = None):
        self.entity_id = entity_id
        self.status = status
        self.action = action
        self.detail = detail
        message = f"Cannot {action} #{entity_id} in status '{status}'"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class DeliveryError(PlacementError):
    """Raised by publish gateways when a placement could not be delivered.

    The engine converts it into the terminal ``publish_failed`` status;
    deliveries are never retried.
    """

    pass


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Base
    "PlacementError",
    # Core
    "ValidationError",
    "StoreError",
    "ConfigurationError",
    "RetryExhaustedError",
    # Engine
    "NotFoundError",
    "IllegalStateError",
    "DeliveryError",
]
