"""
Domain exceptions raised by the arena services.

Routes never catch these individually; app.py maps each class to an HTTP
status with a single exception handler.
"""


class ArenaError(Exception):
    """Base class for all service-level errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ArenaError):
    """Missing or malformed input. Raised before any state is mutated."""

    status_code = 400


class AlreadyJoinedError(ArenaError):
    """The user already belongs to an alliance for the current war."""

    status_code = 409


class BattleNotFoundError(ArenaError):
    status_code = 404


class UpstreamUnavailableError(ArenaError):
    """The battle database (or another collaborator) could not be reached."""

    status_code = 503
