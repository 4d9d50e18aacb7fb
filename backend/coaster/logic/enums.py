"""
String enum definitions for room and round concepts.
"""

from enum import StrEnum


class RoomState(StrEnum):
    """Room lifecycle state."""

    LOBBY = "lobby"
    PLAYING = "playing"


class DifficultyMode(StrEnum):
    """How quickly range tolerances shrink as a game advances."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class CriterionFamily(StrEnum):
    """Question family a criterion belongs to."""

    RANGE = "range"  # closest to a revealed target value
    LANDMARK = "landmark"  # superlative: tallest, fastest, ...
