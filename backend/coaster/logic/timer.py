"""
Server-side room timer.

Each room owns exactly one RoomTimer. It drives every suspension point of a
game: the announcement delay before the first round, the round deadline, the
grace period after everyone answered, the results display between rounds and
the backoff after a failed round build. Arming the timer cancels whatever it
was waiting on before, so a superseded step can never fire.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from coaster.server.settings import GameServerSettings


class TimerConfig(BaseModel):
    """Fixed delays of the round flow, in seconds."""

    announcement_seconds: float = Field(default=2.0, ge=0)
    grace_seconds: float = Field(default=1.0, ge=0)
    results_display_seconds: float = Field(default=5.0, ge=0)
    selection_retry_seconds: float = Field(default=2.0, ge=0)

    @classmethod
    def from_settings(cls, settings: GameServerSettings) -> TimerConfig:
        """Build TimerConfig from the millisecond values in GameServerSettings."""
        return cls(
            announcement_seconds=settings.announcement_delay_ms / 1000,
            grace_seconds=settings.grace_period_ms / 1000,
            results_display_seconds=settings.results_display_ms / 1000,
            selection_retry_seconds=settings.selection_retry_ms / 1000,
        )


class RoomTimer:
    """A single cancellable delayed callback."""

    def __init__(self) -> None:
        self._active_task: asyncio.Task[None] | None = None
        self._label: str | None = None

    @property
    def is_armed(self) -> bool:
        return self._active_task is not None and not self._active_task.done()

    @property
    def label(self) -> str | None:
        """Name of the pending step, for logs and tests."""
        return self._label if self.is_armed else None

    def start(self, seconds: float, on_timeout: Callable[[], Awaitable[None]], label: str = "") -> None:
        """Arm the timer, replacing any pending callback."""
        self.cancel()
        self._label = label
        self._active_task = asyncio.create_task(self._run_timer(seconds, on_timeout))

    def cancel(self) -> None:
        """Cancel the pending callback, if any."""
        if self._active_task is not None and not self._active_task.done():
            self._active_task.cancel()
        self._active_task = None
        self._label = None

    async def _run_timer(self, seconds: float, on_timeout: Callable[[], Awaitable[None]]) -> None:
        try:
            await asyncio.sleep(seconds)
        except asyncio.CancelledError:
            return
        # Detach before running the callback so it can arm the next step
        # without cancelling the task it is running in.
        if self._active_task is asyncio.current_task():
            self._active_task = None
            self._label = None
        try:
            await on_timeout()
        except Exception:
            logger.exception("room timer callback failed")
