"""Outbound side of a client connection, as seen by rooms and rounds."""

from abc import ABC, abstractmethod

from coaster.messaging.wire import Event, pack_event


class ClientConnection(ABC):
    """
    A client the session layer can push events to.

    Reading frames belongs to the transport loop, so the session layer only
    ever sends and closes. Tests substitute an in-memory implementation.
    """

    @property
    @abstractmethod
    def connection_id(self) -> str: ...

    @abstractmethod
    async def send_bytes(self, data: bytes) -> None:
        """Write one frame; raise ConnectionError once the client is gone."""

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None: ...

    async def send_event(self, event: Event) -> None:
        await self.send_bytes(pack_event(event))
