import itertools

from coaster.logic.exceptions import InvalidSettingsError
from coaster.messaging.protocol import ClientConnection
from coaster.session.models import USERNAME_MAX_LENGTH, UserSession


def normalize_username(raw: str) -> str:
    """Trim and cap a username; reject names that are empty after trimming."""
    trimmed = raw.strip()
    if not trimmed:
        raise InvalidSettingsError("Please enter a username!")
    return trimmed[:USERNAME_MAX_LENGTH]


class PresenceRegistry:
    """In-memory map between connections and per-session user ids.

    User ids are positive integers handed out in connection order and never
    reused within a process. A session lives exactly as long as its connection.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._by_connection: dict[str, UserSession] = {}  # connection_id -> UserSession
        self._by_user: dict[int, UserSession] = {}  # user_id -> UserSession

    def register(self, connection: ClientConnection) -> UserSession:
        """Create a session for a new connection. Return the session."""
        existing = self._by_connection.get(connection.connection_id)
        if existing is not None:
            return existing
        session = UserSession(user_id=next(self._ids), connection=connection)
        self._by_connection[connection.connection_id] = session
        self._by_user[session.user_id] = session
        return session

    def unregister(self, connection_id: str) -> UserSession | None:
        """Remove and return the session bound to a connection."""
        session = self._by_connection.pop(connection_id, None)
        if session is not None:
            self._by_user.pop(session.user_id, None)
        return session

    def get_by_connection(self, connection_id: str) -> UserSession | None:
        return self._by_connection.get(connection_id)

    def display_name(self, user_id: int) -> str:
        session = self._by_user.get(user_id)
        return session.display_name if session is not None else f"User {user_id}"

    def connections_for(self, user_ids: list[int]) -> list[ClientConnection]:
        """Return live connections for the given users, skipping unknown ids."""
        return [self._by_user[u].connection for u in user_ids if u in self._by_user]

    @property
    def connection_count(self) -> int:
        return len(self._by_connection)
