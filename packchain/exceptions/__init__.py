"""Custom exceptions for the packchain order lifecycle core."""


class PackchainError(Exception):
    """Base exception for all application errors."""

    status_code = 500
    default_message = "An internal error occurred"

    def __init__(self, message=None, status_code=None, payload=None):
        message = message or self.default_message
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class BadRequestError(PackchainError):
    """Structurally invalid operation (empty draft, last site, bad transition)."""
    status_code = 400
    default_message = "Invalid request"


class ForbiddenError(PackchainError):
    """Raised when a role or ownership check fails."""
    status_code = 403
    default_message = "Access denied. Insufficient rights."


class NotFoundError(PackchainError):
    """Raised when a resource does not exist or is not visible to the actor."""
    status_code = 404
    default_message = "Resource not found"


class ConflictError(PackchainError):
    """Raised when a concurrent modification guard trips."""
    status_code = 409
    default_message = (
        "The order was modified by another request. "
        "Refetch it and retry the transition."
    )


class OrderLockedError(BadRequestError, ForbiddenError):
    """
    Raised when deleting an order that already left the REGISTERED state.

    The request is structurally invalid for the order's state and the
    station no longer has the right to remove it, so callers may catch
    either parent class.
    """
    status_code = 400
    default_message = "Only orders in the REGISTERED state can be deleted."
