"""
Error taxonomy for the Contact Linking Engine.

Every error carries a stable machine-readable code and the HTTP status the
API layer answers with.
"""

from typing import Any, Optional


class IdentityError(Exception):
    """Base class for all linking errors."""
    code = "IDENTITY_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidObservation(IdentityError):
    """Neither email nor phone number was supplied."""
    code = "INVALID_OBSERVATION"
    status_code = 400


class StoreFailure(IdentityError):
    """A ContactStore call failed; nothing from the unit of work was committed."""
    code = "STORE_FAILURE"
    status_code = 500


class InvariantViolation(IdentityError):
    """Stored state contradicts the identity graph invariants."""
    code = "INVARIANT_VIOLATION"
    status_code = 422


class Conflict(IdentityError):
    """An optimistic update precondition did not hold."""
    code = "CONFLICT"
    status_code = 409


class LockTimeout(IdentityError):
    """The identity key set could not be acquired in time."""
    code = "LOCK_TIMEOUT"
    status_code = 503
