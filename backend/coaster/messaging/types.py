from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from coaster.logic.enums import RoomState

# ASCII control character boundaries for input validation
_SPACE_ORD = 0x20
_DEL_ORD = 0x7F

SYSTEM_SENDER = "System"


def _reject_control_characters(v: str) -> str:
    if any((ord(c) < _SPACE_ORD and c not in ("\t", "\n", "\r")) or ord(c) == _DEL_ORD for c in v):
        raise ValueError("text must not contain control characters")
    return v


class ClientMessageType(StrEnum):
    SET_USERNAME = "setUsername"
    QUICK_QUEUE = "quickQueue"
    CREATE_ROOM = "createRoom"
    JOIN_ROOM = "joinRoom"
    LEAVE_ROOM = "leaveRoom"
    UPDATE_GAME_SETTINGS = "updateGameSettings"
    START_GAME = "startGame"
    SUBMIT_ANSWER = "submitAnswer"
    END_GAME = "endGame"
    CHAT = "chatMessage"
    PING = "ping"


class SessionMessageType(StrEnum):
    USER_ID_ASSIGNED = "userIdAssigned"
    USERNAME_SET = "usernameSet"
    ROOM_CREATED = "roomCreated"
    JOINED_ROOM = "joinedRoom"
    ROOM_ALREADY_JOINED = "roomAlreadyJoined"
    ROOM_USERS_UPDATE = "roomUsersUpdate"
    NEW_HOST_ASSIGNED = "newHostAssigned"
    GAME_STARTED = "gameStarted"
    NEW_ROUND = "newRound"
    PLAYER_ANSWERED = "playerAnswered"
    ROUND_ENDED = "roundEnded"
    GAME_ENDED = "gameEnded"
    LEFT_ROOM = "leftRoom"
    CHAT = "chatMessage"
    ERROR = "error"
    PONG = "pong"


class SessionErrorCode(StrEnum):
    INVALID_MESSAGE = "invalid_message"
    INVALID_SETTINGS = "invalid_settings"
    NOT_HOST = "not_host"
    INVALID_STATE = "invalid_state"
    ROOM_NOT_FOUND = "room_not_found"
    ROOM_FULL = "room_full"
    GAME_IN_PROGRESS = "game_in_progress"
    RATE_LIMITED = "rate_limited"
    INTERNAL_ERROR = "internal_error"


# --- Client -> server ---


class SetUsernameMessage(BaseModel):
    type: Literal[ClientMessageType.SET_USERNAME] = ClientMessageType.SET_USERNAME
    username: str = Field(max_length=200)

    @field_validator("username")
    @classmethod
    def _validate_username(cls, v: str) -> str:
        return _reject_control_characters(v)


class QuickQueueMessage(BaseModel):
    type: Literal[ClientMessageType.QUICK_QUEUE] = ClientMessageType.QUICK_QUEUE


class CreateRoomMessage(BaseModel):
    """Room config fields are range-checked by RoomConfig so errors read well."""

    type: Literal[ClientMessageType.CREATE_ROOM] = ClientMessageType.CREATE_ROOM
    max_players: int | None = None
    starting_health: int | None = None
    round_time_ms: int | None = None
    use_imperial: bool | None = None
    difficulty_mode: str | None = None


class JoinRoomMessage(BaseModel):
    type: Literal[ClientMessageType.JOIN_ROOM] = ClientMessageType.JOIN_ROOM
    room_code: str = Field(max_length=50)


class LeaveRoomMessage(BaseModel):
    type: Literal[ClientMessageType.LEAVE_ROOM] = ClientMessageType.LEAVE_ROOM


class UpdateGameSettingsMessage(BaseModel):
    type: Literal[ClientMessageType.UPDATE_GAME_SETTINGS] = ClientMessageType.UPDATE_GAME_SETTINGS
    max_players: int | None = None
    starting_health: int | None = None
    round_time_ms: int | None = None
    use_imperial: bool | None = None
    difficulty_mode: str | None = None


class StartGameMessage(BaseModel):
    type: Literal[ClientMessageType.START_GAME] = ClientMessageType.START_GAME


class SubmitAnswerMessage(BaseModel):
    type: Literal[ClientMessageType.SUBMIT_ANSWER] = ClientMessageType.SUBMIT_ANSWER
    coaster_id: int | str


class EndGameMessage(BaseModel):
    type: Literal[ClientMessageType.END_GAME] = ClientMessageType.END_GAME


class ChatMessage(BaseModel):
    type: Literal[ClientMessageType.CHAT] = ClientMessageType.CHAT
    text: str = Field(min_length=1, max_length=1000)

    @field_validator("text")
    @classmethod
    def _validate_text(cls, v: str) -> str:
        return _reject_control_characters(v)


class PingMessage(BaseModel):
    type: Literal[ClientMessageType.PING] = ClientMessageType.PING


ClientMessage = Annotated[
    SetUsernameMessage
    | QuickQueueMessage
    | CreateRoomMessage
    | JoinRoomMessage
    | LeaveRoomMessage
    | UpdateGameSettingsMessage
    | StartGameMessage
    | SubmitAnswerMessage
    | EndGameMessage
    | ChatMessage
    | PingMessage,
    Field(discriminator="type"),
]

_client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_message(data: dict[str, Any]) -> ClientMessage:
    """Parse a raw dict into a typed ClientMessage."""
    return _client_message_adapter.validate_python(data)


# --- Server -> client ---


class RoomUserInfo(BaseModel):
    """One member as shown in the room snapshot."""

    user_id: int
    username: str
    is_host: bool
    health: int


class CoasterCard(BaseModel):
    """Public coaster fields shown while a round is running."""

    id: int | str
    name: str
    park: str
    image: str | None = None
    main_picture: str | None = None


class CriterionPrompt(BaseModel):
    type: str
    display_value: str


class CriterionReveal(BaseModel):
    key: str
    type: str


class RoundResultInfo(BaseModel):
    user_id: int
    username: str
    answer: int | str | None
    answered_coaster: dict[str, Any] | None
    is_correct: bool
    too_slow: bool
    health: int
    streak: int


class WinnerInfo(BaseModel):
    user_id: int
    username: str


class UserIdAssignedMessage(BaseModel):
    type: Literal[SessionMessageType.USER_ID_ASSIGNED] = SessionMessageType.USER_ID_ASSIGNED
    user_id: int


class UsernameSetMessage(BaseModel):
    type: Literal[SessionMessageType.USERNAME_SET] = SessionMessageType.USERNAME_SET
    username: str


class RoomCreatedMessage(BaseModel):
    type: Literal[SessionMessageType.ROOM_CREATED] = SessionMessageType.ROOM_CREATED
    room_code: str
    is_host: bool = True


class JoinedRoomMessage(BaseModel):
    type: Literal[SessionMessageType.JOINED_ROOM] = SessionMessageType.JOINED_ROOM
    room_code: str
    game_state: RoomState
    is_public: bool


class RoomAlreadyJoinedMessage(BaseModel):
    type: Literal[SessionMessageType.ROOM_ALREADY_JOINED] = SessionMessageType.ROOM_ALREADY_JOINED
    room_code: str


class RoomUsersUpdateMessage(BaseModel):
    """Full room snapshot, broadcast after every membership, host or state change."""

    type: Literal[SessionMessageType.ROOM_USERS_UPDATE] = SessionMessageType.ROOM_USERS_UPDATE
    users: list[RoomUserInfo]
    room_limit: int
    current_count: int
    game_state: RoomState
    starting_health: int
    round_time_seconds: float
    use_imperial: bool
    is_public: bool
    difficulty_mode: str


class NewHostAssignedMessage(BaseModel):
    type: Literal[SessionMessageType.NEW_HOST_ASSIGNED] = SessionMessageType.NEW_HOST_ASSIGNED
    user_id: int


class GameStartedMessage(BaseModel):
    type: Literal[SessionMessageType.GAME_STARTED] = SessionMessageType.GAME_STARTED
    message: str


class NewRoundMessage(BaseModel):
    type: Literal[SessionMessageType.NEW_ROUND] = SessionMessageType.NEW_ROUND
    round_number: int
    coasters: list[CoasterCard]
    criterion: CriterionPrompt
    time_limit_ms: int


class PlayerAnsweredMessage(BaseModel):
    type: Literal[SessionMessageType.PLAYER_ANSWERED] = SessionMessageType.PLAYER_ANSWERED
    user_id: int
    username: str


class RoundEndedMessage(BaseModel):
    type: Literal[SessionMessageType.ROUND_ENDED] = SessionMessageType.ROUND_ENDED
    round_number: int
    correct_coaster_id: int | str
    correct_coaster: dict[str, Any]
    all_coasters: list[dict[str, Any]]
    results: list[RoundResultInfo]
    criterion: CriterionReveal
    is_landmark: bool


class GameEndedMessage(BaseModel):
    type: Literal[SessionMessageType.GAME_ENDED] = SessionMessageType.GAME_ENDED
    message: str
    winner: WinnerInfo | None = None


class LeftRoomMessage(BaseModel):
    type: Literal[SessionMessageType.LEFT_ROOM] = SessionMessageType.LEFT_ROOM


class SessionChatMessage(BaseModel):
    type: Literal[SessionMessageType.CHAT] = SessionMessageType.CHAT
    user_id: int | str
    username: str
    message: str


class ErrorMessage(BaseModel):
    type: Literal[SessionMessageType.ERROR] = SessionMessageType.ERROR
    code: SessionErrorCode
    message: str


class PongMessage(BaseModel):
    type: Literal[SessionMessageType.PONG] = SessionMessageType.PONG


def system_chat(text: str) -> dict[str, Any]:
    """Chat line authored by the server (joins, leaves, host changes)."""
    return SessionChatMessage(user_id=SYSTEM_SENDER, username=SYSTEM_SENDER, message=text).model_dump()
