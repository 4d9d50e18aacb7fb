"""Room registry: creation, code allocation, membership, host assignment and matchmaking."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from coaster.logic.exceptions import GameInProgressError, RoomFullError, RoomNotFoundError
from coaster.logic.settings import RoomConfig
from coaster.session.models import Room

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = structlog.get_logger()

ROOM_CODE_LENGTH = 6
_ROOM_CODE_ALPHABET = "0123456789"


@dataclass(frozen=True)
class LeaveResult:
    """What happened to a room when a member left it.

    new_host_id is set when the departing member was host and someone remains.
    destroyed is True when the room was emptied and torn down.
    replacement is the public room created to keep matchmaking open, if any.
    """

    room: Room
    new_host_id: int | None = None
    destroyed: bool = False
    replacement: Room | None = None


class RoomRegistry:
    """Owns every live room and the public matchmaking pool.

    Purely state management: no connection I/O. Callers read the returned
    rooms/results to decide what to broadcast.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()  # noqa: S311
        self._rooms: dict[str, Room] = {}  # room_code -> Room
        self._public_pool: list[str] = []  # room codes in creation order

    # --- Queries ---

    def get_room(self, code: str) -> Room | None:
        return self._rooms.get(code)

    def __iter__(self) -> Iterator[Room]:
        return iter(list(self._rooms.values()))

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def public_room_codes(self) -> list[str]:
        return list(self._public_pool)

    def is_alive(self, room: Room) -> bool:
        """True while this exact room object is still registered."""
        return self._rooms.get(room.code) is room

    # --- Creation ---

    def create_private_room(self, config: RoomConfig) -> Room:
        """Create a lobby room reachable only by its code."""
        room = self._register(config.model_copy(update={"is_public": False}))
        logger.info("room created", room_code=room.code, max_players=room.config.max_players)
        return room

    def create_public_room(self) -> Room:
        """Create a matchmaking room and add it to the public pool."""
        room = self._register(RoomConfig.public())
        self._public_pool.append(room.code)
        logger.info("public room created", room_code=room.code)
        return room

    def find_or_create_public_room(self) -> Room:
        """Return the first joinable public room, creating one if none qualifies."""
        room = self._first_joinable_public_room()
        if room is not None:
            return room
        return self.create_public_room()

    def ensure_public_room_available(self) -> Room | None:
        """Create a public room when no joinable one exists. Return the new room, if created."""
        if self._first_joinable_public_room() is not None:
            return None
        return self.create_public_room()

    # --- Membership ---

    def check_joinable(self, code: str) -> Room:
        """Validate that a room can accept one more member, without mutating it."""
        room = self._rooms.get(code)
        if room is None:
            raise RoomNotFoundError("Room not found!")
        if room.is_playing:
            raise GameInProgressError("Game is in progress. Cannot join right now.")
        if room.is_full:
            raise RoomFullError("This room is full!")
        return room

    def join_room(self, code: str, user_id: int) -> Room:
        """Add a member to a lobby room. The first member becomes host."""
        room = self.check_joinable(code)
        room.members.append(user_id)
        if room.host_user_id is None or room.host_user_id not in room.members:
            room.host_user_id = user_id
        if room.game is not None:
            room.game.health[user_id] = room.config.starting_health
            room.game.streaks[user_id] = 0
        if room.is_public and room.is_full:
            self.ensure_public_room_available()
        return room

    def leave_room(self, code: str, user_id: int) -> LeaveResult | None:
        """Remove a member, migrating host or tearing the room down as needed."""
        room = self._rooms.get(code)
        if room is None or user_id not in room.members:
            return None

        room.members.remove(user_id)
        if room.game is not None:
            room.game.forget(user_id)

        if room.is_empty:
            replacement = self._destroy(room)
            return LeaveResult(room=room, destroyed=True, replacement=replacement)

        new_host_id = None
        if room.host_user_id == user_id:
            room.host_user_id = room.members[0]
            new_host_id = room.host_user_id
            logger.info("host migrated", room_code=room.code, host_user_id=new_host_id)
        return LeaveResult(room=room, new_host_id=new_host_id)

    # --- Internal helpers ---

    def _register(self, config: RoomConfig) -> Room:
        room = Room(code=self._allocate_code(), config=config)
        self._rooms[room.code] = room
        return room

    def _allocate_code(self) -> str:
        while True:
            code = "".join(self._rng.choice(_ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))
            if code not in self._rooms:
                return code

    def _first_joinable_public_room(self) -> Room | None:
        for code in self._public_pool:
            room = self._rooms.get(code)
            if room is not None and room.is_joinable:
                return room
        return None

    def _destroy(self, room: Room) -> Room | None:
        """Tear down an empty room. Return a replacement public room, if one was created."""
        room.timer.cancel()
        self._rooms.pop(room.code, None)
        logger.info("room destroyed", room_code=room.code)
        if not room.is_public:
            return None
        self._public_pool = [c for c in self._public_pool if c != room.code]
        return self.ensure_public_room_available()
