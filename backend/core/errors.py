"""
Domain errors raised by the shipping calculator and the consolidation engine.

All derive from ValueError so callers that only guard against bad input keep
working. Routers translate them to HTTP status codes (see api.errors).
"""


class LogisticsError(ValueError):
    """Base class for user-recoverable logistics failures."""


class InvalidInputError(LogisticsError):
    """Rejected before any write: blank tracking number, bad settings, bad weight."""


class NotFoundError(LogisticsError):
    pass


class ConflictError(LogisticsError):
    """The write collides with existing state (e.g. a PO is already open)."""


class InvalidTransitionError(LogisticsError):
    """A PO status change not allowed by the transition table."""

    def __init__(self, current: str, requested: str, detail: str | None = None):
        self.current = current
        self.requested = requested
        message = detail or f"Cannot move PO from '{current}' to '{requested}'"
        super().__init__(message)
