"""Error types raised by the game services."""


class GameError(Exception):
    """Base class for errors that are reported back to the caller."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(GameError):
    """Missing or malformed input. Raised before any state is touched."""

    status_code = 400


class ForbiddenError(GameError):
    """The actor lacks the role, ability or timing the action requires."""

    status_code = 403


class NotFoundError(GameError):
    """A referenced player, trial, accusation or mission does not exist."""

    status_code = 404


class ConflictError(GameError):
    """A row changed between read and write, or a uniqueness constraint tripped."""

    status_code = 409


class DependencyError(GameError):
    """The database is unavailable."""

    status_code = 503
