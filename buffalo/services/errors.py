"""
Domain errors raised by the services.

All of them subclass ValueError so callers that only care about
"the request was rejected" can catch ValueError, while the API layer maps
each kind to its own status code.
"""


class BuffaloError(ValueError):
    """Base class for domain errors."""


class ValidationError(BuffaloError):
    """Raised for malformed or incomplete input (e.g. a missing prediction slot)."""


class NotFoundError(BuffaloError):
    """Raised when a referenced player, period, request or call does not exist."""


class ConflictError(BuffaloError):
    """Raised for duplicate pending requests or already-resolved requests."""


class InvalidTransitionError(ConflictError):
    """Raised when a call cannot move to the requested status."""


class InsufficientBalanceError(BuffaloError):
    """Raised when a buffalo is called without a positive balance."""


class OutOfRangeError(BuffaloError):
    """Raised when a balance delta would drive a balance negative."""
