from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from coaster.logic.enums import RoomState
from coaster.logic.settings import RoomConfig
from coaster.logic.timer import RoomTimer

if TYPE_CHECKING:
    from coaster.logic.enums import DifficultyMode
    from coaster.logic.round import RoundState
    from coaster.messaging.protocol import ClientConnection

USERNAME_MAX_LENGTH = 20


@dataclass
class UserSession:
    """Ephemeral identity bound to one connection.

    Lifecycle:
    - Created when the connection opens (user_id assigned)
    - username is set by the client, possibly several times
    - room_code tracks the room the user is currently in, if any
    - Removed from the presence registry when the connection closes
    """

    user_id: int
    connection: ClientConnection
    username: str | None = None
    room_code: str | None = None

    @property
    def connection_id(self) -> str:
        return self.connection.connection_id

    @property
    def display_name(self) -> str:
        return self.username or f"User {self.user_id}"


@dataclass
class GameData:
    """State of one game in a room.

    Replaced on every start_game, so timer callbacks can check identity
    (``room.game is game``) to detect that the game they belong to is over.
    The config fields that shape rounds are copied in at start so settings
    changes only affect the next game.
    """

    round_time_ms: int
    use_imperial: bool
    difficulty_mode: DifficultyMode
    health: dict[int, int] = field(default_factory=dict)
    streaks: dict[int, int] = field(default_factory=dict)
    round_number: int = 0
    current_round: RoundState | None = None

    @property
    def round_active(self) -> bool:
        return self.current_round is not None and self.current_round.active

    def forget(self, user_id: int) -> None:
        """Drop every trace of a departed member."""
        self.health.pop(user_id, None)
        self.streaks.pop(user_id, None)
        if self.current_round is not None:
            self.current_round.answers.pop(user_id, None)


@dataclass
class Room:
    """A game session with its own membership, config and state.

    members keeps join order; host migration promotes members[0].
    """

    code: str
    config: RoomConfig = field(default_factory=RoomConfig)
    members: list[int] = field(default_factory=list)
    host_user_id: int | None = None
    state: RoomState = RoomState.LOBBY
    game: GameData | None = None
    timer: RoomTimer = field(default_factory=RoomTimer)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def is_public(self) -> bool:
        return self.config.is_public

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def is_empty(self) -> bool:
        return not self.members

    @property
    def is_full(self) -> bool:
        return self.member_count >= self.config.max_players

    @property
    def is_playing(self) -> bool:
        return self.state == RoomState.PLAYING

    @property
    def is_joinable(self) -> bool:
        return self.state == RoomState.LOBBY and not self.is_full

    def health_of(self, user_id: int) -> int:
        """Current health, falling back to the configured starting health."""
        if self.game is not None and user_id in self.game.health:
            return self.game.health[user_id]
        return self.config.starting_health
