"""Error taxonomy shared by the service layer.

Services raise these internally; action methods catch them at their boundary
and turn them into an ``ActionResult`` carrying the message, so callers
branch on ``result.success`` instead of handling exceptions.
"""


class ClarvuError(Exception):
    """Base class for all expected application errors."""
    pass


class Unauthenticated(ClarvuError):
    """Raised when an action runs without a signed-in user."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class ValidationError(ClarvuError):
    """Raised for invalid input (empty title, out-of-range duration, ...)."""
    pass


class NotFoundError(ClarvuError):
    """Raised when a row does not exist or is not owned by the user."""
    pass


class ConflictError(ClarvuError):
    """Raised when a write was based on a stale version of a row."""
    pass
