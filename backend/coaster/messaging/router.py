from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from coaster.logic.exceptions import (
    GameInProgressError,
    GameRuleError,
    InvalidSettingsError,
    InvalidStateError,
    NotHostError,
    RoomFullError,
    RoomNotFoundError,
)
from coaster.logic.settings import SettingsUpdate
from coaster.messaging.types import (
    ChatMessage,
    CreateRoomMessage,
    EndGameMessage,
    JoinRoomMessage,
    LeaveRoomMessage,
    PingMessage,
    QuickQueueMessage,
    SessionErrorCode,
    SetUsernameMessage,
    StartGameMessage,
    SubmitAnswerMessage,
    UpdateGameSettingsMessage,
    parse_client_message,
)

if TYPE_CHECKING:
    from coaster.messaging.protocol import ClientConnection
    from coaster.messaging.types import ClientMessage
    from coaster.session.manager import SessionManager

logger = structlog.get_logger()

_ERROR_CODES: dict[type[GameRuleError], SessionErrorCode] = {
    InvalidSettingsError: SessionErrorCode.INVALID_SETTINGS,
    NotHostError: SessionErrorCode.NOT_HOST,
    InvalidStateError: SessionErrorCode.INVALID_STATE,
    RoomNotFoundError: SessionErrorCode.ROOM_NOT_FOUND,
    RoomFullError: SessionErrorCode.ROOM_FULL,
    GameInProgressError: SessionErrorCode.GAME_IN_PROGRESS,
}


def error_code_for(error: GameRuleError) -> SessionErrorCode:
    for error_type, code in _ERROR_CODES.items():
        if isinstance(error, error_type):
            return code
    return SessionErrorCode.INVALID_STATE


class MessageRouter:
    """
    Routes incoming messages to appropriate handlers.

    This class contains pure business logic and can be tested
    without real WebSocket connections.
    """

    def __init__(self, session_manager: SessionManager) -> None:
        self._session_manager = session_manager

    async def handle_message(
        self,
        connection: ClientConnection,
        raw_message: dict[str, Any],
    ) -> None:
        try:
            message = parse_client_message(raw_message)
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            logger.warning("invalid message", connection_id=connection.connection_id, error=str(e))
            await self._session_manager.send_error(connection, SessionErrorCode.INVALID_MESSAGE, str(e))
            return

        try:
            await self._dispatch(connection, message)
        except GameRuleError as e:
            await self._session_manager.send_error(connection, error_code_for(e), e.message)
        except (ConnectionError, RuntimeError):
            # the socket went away mid-handler; the endpoint runs disconnect cleanup
            raise
        except Exception:
            logger.exception("unhandled error while handling message", message_type=str(message.type))
            await self._session_manager.send_error(
                connection,
                SessionErrorCode.INTERNAL_ERROR,
                "Something went wrong. Please try again.",
            )

    async def _dispatch(self, connection: ClientConnection, message: ClientMessage) -> None:
        manager = self._session_manager
        if isinstance(message, SetUsernameMessage):
            await manager.set_username(connection, message.username)
        elif isinstance(message, QuickQueueMessage):
            await manager.quick_queue(connection)
        elif isinstance(message, CreateRoomMessage):
            await manager.create_room(connection, message.model_dump(exclude={"type"}))
        elif isinstance(message, JoinRoomMessage):
            await manager.join_room(connection, message.room_code)
        elif isinstance(message, LeaveRoomMessage):
            await manager.leave_room(connection)
        elif isinstance(message, UpdateGameSettingsMessage):
            await manager.update_settings(connection, SettingsUpdate(**message.model_dump(exclude={"type"})))
        elif isinstance(message, StartGameMessage):
            await manager.start_game(connection)
        elif isinstance(message, SubmitAnswerMessage):
            await manager.submit_answer(connection, message.coaster_id)
        elif isinstance(message, EndGameMessage):
            await manager.end_game(connection)
        elif isinstance(message, ChatMessage):
            await manager.chat(connection, message.text)
        elif isinstance(message, PingMessage):
            await manager.handle_ping(connection)

    async def handle_connect(self, connection: ClientConnection) -> None:
        await self._session_manager.connect(connection)

    async def handle_disconnect(self, connection: ClientConnection) -> None:
        await self._session_manager.disconnect(connection)
