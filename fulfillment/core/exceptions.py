"""Typed errors raised by the fulfillment services.

Services raise these instead of HTTPException; the API layer maps each
class to a status code (see fulfillment.main).
"""
from typing import Any, Dict, Optional


class FulfillmentError(Exception):
    """Base exception for fulfillment engine errors."""
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(FulfillmentError):
    """Malformed or out-of-bound input. Fix the input and resubmit."""
    status_code = 400


class NotFoundError(FulfillmentError):
    """Referenced record does not exist."""
    status_code = 404


class InvalidStateError(FulfillmentError):
    """Transition attempted from a state that does not permit it."""
    status_code = 422

    def __init__(self, entity: str, current_status: str, attempted: str, message: Optional[str] = None):
        self.current_status = current_status
        self.attempted = attempted
        super().__init__(
            message or f"Cannot {attempted} {entity}: current status is '{current_status}'",
            {"current_status": current_status, "attempted": attempted},
        )


class ConflictError(FulfillmentError):
    """Operation collides with an existing record."""
    status_code = 409


class PolicyViolationError(FulfillmentError):
    """A configurable business policy refuses the acting user."""
    status_code = 403
