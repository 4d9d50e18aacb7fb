"""Typed domain exceptions for room and round rule violations.

All rule violations raised by the registry and the orchestrator subclass
GameRuleError. The session layer catches GameRuleError at its boundary and
turns it into an error message for the originating connection; nothing is
mutated when one of these is raised.
"""


class GameRuleError(Exception):
    """Base exception for room and round rule violations."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidSettingsError(GameRuleError):
    """Client supplied a bad value (room config, username, room code)."""


class NotHostError(GameRuleError):
    """A non-host attempted a host-only action."""


class InvalidStateError(GameRuleError):
    """Action is not valid in the current room or round state."""


class RoomNotFoundError(GameRuleError):
    """No live room has the requested code."""


class RoomFullError(GameRuleError):
    """Room membership is already at capacity."""


class GameInProgressError(GameRuleError):
    """Room is playing and does not accept new members."""


class CatalogError(Exception):
    """Coaster dataset is missing or malformed. Fatal at startup."""
