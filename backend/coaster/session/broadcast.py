"""Shared broadcast utilities for sending messages to room members."""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

from coaster.messaging.types import (
    NewHostAssignedMessage,
    RoomUserInfo,
    RoomUsersUpdateMessage,
    system_chat,
)

if TYPE_CHECKING:
    from coaster.messaging.protocol import ClientConnection
    from coaster.messaging.wire import Event
    from coaster.session.models import Room
    from coaster.session.presence import PresenceRegistry


async def broadcast_to_connections(
    connections: list[ClientConnection],
    event: Event,
) -> None:
    """Send an event to every connection.

    A connection that dropped mid-send is skipped; its disconnect handler
    removes it from the room.
    """
    for connection in list(connections):
        with contextlib.suppress(RuntimeError, OSError):
            await connection.send_event(event)


def build_room_snapshot(room: Room, presence: PresenceRegistry) -> RoomUsersUpdateMessage:
    """Full room state as seen by its members."""
    config = room.config
    return RoomUsersUpdateMessage(
        users=[
            RoomUserInfo(
                user_id=user_id,
                username=presence.display_name(user_id),
                is_host=user_id == room.host_user_id,
                health=room.health_of(user_id),
            )
            for user_id in room.members
        ],
        room_limit=config.max_players,
        current_count=room.member_count,
        game_state=room.state,
        starting_health=config.starting_health,
        round_time_seconds=config.round_time_ms / 1000,
        use_imperial=config.use_imperial,
        is_public=config.is_public,
        difficulty_mode=config.difficulty_mode,
    )


class RoomBroadcaster:
    """Sends room-wide events to the live connections of a room's members."""

    def __init__(self, presence: PresenceRegistry) -> None:
        self._presence = presence

    async def to_room(self, room: Room, event: Event) -> None:
        await broadcast_to_connections(self._presence.connections_for(room.members), event)

    async def snapshot(self, room: Room) -> None:
        await self.to_room(room, build_room_snapshot(room, self._presence))

    async def system_chat(self, room: Room, text: str) -> None:
        await self.to_room(room, system_chat(text))

    async def new_host(self, room: Room, host_user_id: int) -> None:
        """Announce a host migration to the room."""
        await self.to_room(room, NewHostAssignedMessage(user_id=host_user_id))
        await self.system_chat(room, f"{self._presence.display_name(host_user_id)} is now the host!")
