"""Room configuration - capacity, health, round time and question difficulty."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from coaster.logic.enums import DifficultyMode
from coaster.logic.exceptions import InvalidSettingsError

MIN_PLAYERS = 2
MAX_PLAYERS = 8
DEFAULT_MAX_PLAYERS = 3
PUBLIC_MAX_PLAYERS = 8
DEFAULT_STARTING_HEALTH = 2
DEFAULT_ROUND_TIME_MS = 15000

# Human-readable messages for config fields, keyed by field name.
_FIELD_MESSAGES = {
    "max_players": f"Max Players must be between {MIN_PLAYERS} and {MAX_PLAYERS}.",
    "starting_health": "Starting health must be at least 1.",
    "round_time_ms": "Round time must be greater than zero.",
    "difficulty_mode": "Difficulty must be one of: easy, medium, hard.",
    "use_imperial": "Unit system must be true (imperial) or false (metric).",
}


class RoomConfig(BaseModel):
    """Per-room game configuration.

    Frozen: updates produce a new instance via model_copy, so a running game
    keeps the values it started with.
    """

    model_config = ConfigDict(frozen=True)

    max_players: int = Field(default=DEFAULT_MAX_PLAYERS, ge=MIN_PLAYERS, le=MAX_PLAYERS)
    starting_health: int = Field(default=DEFAULT_STARTING_HEALTH, gt=0)
    round_time_ms: int = Field(default=DEFAULT_ROUND_TIME_MS, gt=0)
    use_imperial: bool = True
    is_public: bool = False
    difficulty_mode: DifficultyMode = DifficultyMode.MEDIUM

    @classmethod
    def public(cls) -> RoomConfig:
        """Fixed configuration used for matchmaking rooms."""
        return cls(max_players=PUBLIC_MAX_PLAYERS, is_public=True)

    @classmethod
    def build(cls, **values: object) -> RoomConfig:
        """Validate raw values, raising InvalidSettingsError with a readable message."""
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise InvalidSettingsError(_describe(e)) from None

    def updated(self, update: SettingsUpdate) -> RoomConfig:
        """Return a copy with every non-None field of the update applied."""
        return RoomConfig.build(**{**self.model_dump(), **update.model_dump(exclude_none=True)})


class SettingsUpdate(BaseModel):
    """Partial config sent by the host. None means "leave unchanged"."""

    max_players: int | None = None
    starting_health: int | None = None
    round_time_ms: int | None = None
    use_imperial: bool | None = None
    difficulty_mode: str | None = None


def _describe(error: ValidationError) -> str:
    for detail in error.errors():
        loc = detail.get("loc") or ()
        if loc and loc[0] in _FIELD_MESSAGES:
            return _FIELD_MESSAGES[str(loc[0])]
    return "Invalid room settings."
