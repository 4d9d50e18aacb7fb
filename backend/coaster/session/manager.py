from __future__ import annotations

import random
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog

from coaster.logic.exceptions import InvalidSettingsError, InvalidStateError, RoomNotFoundError
from coaster.logic.settings import RoomConfig, SettingsUpdate
from coaster.logic.timer import TimerConfig
from coaster.messaging.types import (
    ErrorMessage,
    JoinedRoomMessage,
    LeftRoomMessage,
    PongMessage,
    RoomAlreadyJoinedMessage,
    RoomCreatedMessage,
    SessionChatMessage,
    SessionErrorCode,
    UserIdAssignedMessage,
    UsernameSetMessage,
)
from coaster.session.broadcast import RoomBroadcaster
from coaster.session.orchestrator import RoundOrchestrator
from coaster.session.presence import PresenceRegistry, normalize_username
from coaster.session.room_registry import RoomRegistry

if TYPE_CHECKING:
    from coaster.logic.catalog import Coaster
    from coaster.messaging.protocol import ClientConnection
    from coaster.session.models import Room, UserSession

logger = structlog.get_logger()


class SessionManager:
    """
    Facade between the transport and the room/round core.

    Resolves the caller's session and room, runs every room step under the
    room's lock and produces the resulting broadcasts. Rule violations are
    raised as GameRuleError and turned into error events by the router.
    """

    def __init__(
        self,
        catalog: Sequence[Coaster],
        *,
        timer_config: TimerConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._catalog = catalog
        self._rng = rng or random.Random()  # noqa: S311
        self._presence = PresenceRegistry()
        self._registry = RoomRegistry(rng=self._rng)
        self._broadcaster = RoomBroadcaster(self._presence)
        self._orchestrator = RoundOrchestrator(
            registry=self._registry,
            presence=self._presence,
            broadcaster=self._broadcaster,
            catalog=catalog,
            rng=self._rng,
            timer_config=timer_config or TimerConfig(),
        )

    @property
    def registry(self) -> RoomRegistry:
        return self._registry

    @property
    def presence(self) -> PresenceRegistry:
        return self._presence

    @property
    def room_count(self) -> int:
        return self._registry.room_count

    @property
    def connection_count(self) -> int:
        return self._presence.connection_count

    @property
    def catalog_size(self) -> int:
        return len(self._catalog)

    def cancel_all_timers(self) -> None:
        """Cancel every pending room timer (used on shutdown)."""
        for room in self._registry:
            room.timer.cancel()

    # --- Connection lifecycle ---

    async def connect(self, connection: ClientConnection) -> UserSession:
        session = self._presence.register(connection)
        structlog.contextvars.bind_contextvars(user_id=session.user_id)
        logger.info("user connected")
        await connection.send_event(UserIdAssignedMessage(user_id=session.user_id))
        return session

    async def disconnect(self, connection: ClientConnection) -> None:
        session = self._presence.get_by_connection(connection.connection_id)
        if session is None:
            return
        await self._leave_current_room(session, disconnected=True)
        self._presence.unregister(connection.connection_id)
        logger.info("user disconnected", user_id=session.user_id)

    async def send_error(self, connection: ClientConnection, code: SessionErrorCode, message: str) -> None:
        logger.warning("session error sent to client", error_code=code.value, error_message=message)
        await connection.send_event(ErrorMessage(code=code, message=message))

    # --- Identity ---

    async def set_username(self, connection: ClientConnection, username: str) -> None:
        session = self._require_session(connection)
        session.username = normalize_username(username)
        await connection.send_event(UsernameSetMessage(username=session.username))
        logger.info("username set", username=session.username)

        if session.room_code is None:
            return
        room = self._registry.get_room(session.room_code)
        if room is None:
            return
        async with room.lock:
            if self._registry.is_alive(room) and session.user_id in room.members:
                await self._broadcaster.snapshot(room)
                await self._broadcaster.system_chat(room, f"{session.username} updated their username")

    # --- Membership ---

    async def quick_queue(self, connection: ClientConnection) -> None:
        """Join the first open public room, creating one when none is available."""
        session = self._require_session(connection)
        self._require_username(session)
        await self._leave_current_room(session)

        while True:
            room = self._registry.find_or_create_public_room()
            async with room.lock:
                # another step may have filled or started the room while we waited
                if not self._registry.is_alive(room) or not room.is_joinable:
                    continue
                await self._enter_room(session, room)
                return

    async def create_room(self, connection: ClientConnection, values: dict[str, object]) -> None:
        session = self._require_session(connection)
        self._require_username(session)
        config = RoomConfig.build(**{k: v for k, v in values.items() if v is not None})
        await self._leave_current_room(session)

        room = self._registry.create_private_room(config)
        async with room.lock:
            self._registry.join_room(room.code, session.user_id)
            session.room_code = room.code
            structlog.contextvars.bind_contextvars(room_code=room.code)
            await self._broadcaster.snapshot(room)
            await connection.send_event(RoomCreatedMessage(room_code=room.code))

    async def join_room(self, connection: ClientConnection, room_code: str) -> None:
        session = self._require_session(connection)
        self._require_username(session)
        code = room_code.strip()
        if not code:
            raise InvalidSettingsError("Please enter a room code")
        if session.room_code == code:
            await connection.send_event(RoomAlreadyJoinedMessage(room_code=code))
            return

        room = self._registry.get_room(code)
        if room is None:
            raise RoomNotFoundError("Room not found!")

        # take the seat first; a full or started room leaves the caller where they were
        previous_code = session.room_code
        async with room.lock:
            if not self._registry.is_alive(room):
                raise RoomNotFoundError("Room not found!")
            self._registry.join_room(room.code, session.user_id)
            session.room_code = room.code

        if previous_code is not None:
            await self._leave_room(session, previous_code)

        async with room.lock:
            if self._registry.is_alive(room) and session.user_id in room.members:
                await self._announce_entry(session, room)

    async def leave_room(self, connection: ClientConnection) -> None:
        session = self._require_session(connection)
        if session.room_code is None:
            raise InvalidStateError("You are not in a room!")
        await self._leave_current_room(session)
        await connection.send_event(LeftRoomMessage())

    # --- Room actions ---

    async def update_settings(self, connection: ClientConnection, update: SettingsUpdate) -> None:
        session = self._require_session(connection)
        async with self._locked_room(session) as room:
            await self._orchestrator.update_settings(room, session.user_id, update)

    async def start_game(self, connection: ClientConnection) -> None:
        session = self._require_session(connection)
        async with self._locked_room(session) as room:
            await self._orchestrator.start_game(room, session.user_id)

    async def submit_answer(self, connection: ClientConnection, coaster_id: int | str) -> None:
        session = self._require_session(connection)
        async with self._locked_room(session) as room:
            await self._orchestrator.submit_answer(room, session.user_id, coaster_id)

    async def end_game(self, connection: ClientConnection) -> None:
        session = self._require_session(connection)
        async with self._locked_room(session) as room:
            await self._orchestrator.end_game(room, session.user_id)

    async def chat(self, connection: ClientConnection, text: str) -> None:
        """Relay a chat line to everyone in the sender's room."""
        session = self._require_session(connection)
        room = self._registry.get_room(session.room_code) if session.room_code else None
        if room is None:
            raise InvalidStateError("You are not in a room!")
        await self._broadcaster.to_room(
            room,
            SessionChatMessage(user_id=session.user_id, username=session.display_name, message=text),
        )

    async def handle_ping(self, connection: ClientConnection) -> None:
        await connection.send_event(PongMessage())

    # --- Internal helpers ---

    def _require_session(self, connection: ClientConnection) -> UserSession:
        session = self._presence.get_by_connection(connection.connection_id)
        if session is None:
            # handlers only run between connect and disconnect
            raise InvalidStateError("Connection is not registered.")
        return session

    @staticmethod
    def _require_username(session: UserSession) -> None:
        if not session.username:
            raise InvalidSettingsError("Please enter a username!")

    @asynccontextmanager
    async def _locked_room(self, session: UserSession) -> AsyncIterator[Room]:
        """Hold the lock of the caller's room, failing if the caller is not in one."""
        room = self._registry.get_room(session.room_code) if session.room_code else None
        if room is None:
            raise InvalidStateError("You are not in a room.")
        async with room.lock:
            if not self._registry.is_alive(room) or session.user_id not in room.members:
                raise InvalidStateError("You are not in a room.")
            yield room

    async def _enter_room(self, session: UserSession, room: Room) -> None:
        """Add the session to a room whose lock the caller holds, and announce it."""
        self._registry.join_room(room.code, session.user_id)
        session.room_code = room.code
        await self._announce_entry(session, room)

    async def _announce_entry(self, session: UserSession, room: Room) -> None:
        structlog.contextvars.bind_contextvars(room_code=room.code)
        logger.info("user joined room", room_code=room.code, is_public=room.is_public)

        await self._broadcaster.snapshot(room)
        await session.connection.send_event(
            JoinedRoomMessage(room_code=room.code, game_state=room.state, is_public=room.is_public),
        )
        await self._broadcaster.system_chat(room, f"+ {session.display_name} joined the room!")

    async def _leave_current_room(self, session: UserSession, *, disconnected: bool = False) -> None:
        """Remove the session from its room, migrating host or destroying the room."""
        code = session.room_code
        if code is None:
            return
        session.room_code = None
        structlog.contextvars.unbind_contextvars("room_code")
        await self._leave_room(session, code, disconnected=disconnected)

    async def _leave_room(self, session: UserSession, code: str, *, disconnected: bool = False) -> None:
        room = self._registry.get_room(code)
        if room is None:
            return

        async with room.lock:
            if not self._registry.is_alive(room):
                return
            result = self._registry.leave_room(code, session.user_id)
            if result is None or result.destroyed:
                return
            logger.info("user left room", room_code=code, disconnected=disconnected)

            if result.new_host_id is not None:
                await self._broadcaster.new_host(room, result.new_host_id)
            await self._broadcaster.snapshot(room)
            verb = "has disconnected! 😭" if disconnected else "left the room!"
            await self._broadcaster.system_chat(room, f"- {session.display_name} {verb}")
            await self._orchestrator.handle_departure(room)
