"""
Round orchestration: the lobby/playing state machine of a room.

Public methods expect the caller to hold ``room.lock``. Timer callbacks take
the lock themselves and re-check that the room, game and round they were
armed for are still current before touching any state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from coaster.logic.enums import RoomState
from coaster.logic.exceptions import InvalidStateError, NotHostError
from coaster.logic.round import build_round
from coaster.logic.scoring import alive_members, score_round
from coaster.logic.timer import TimerConfig
from coaster.messaging.types import (
    CoasterCard,
    CriterionPrompt,
    CriterionReveal,
    GameEndedMessage,
    GameStartedMessage,
    NewRoundMessage,
    PlayerAnsweredMessage,
    RoundEndedMessage,
    RoundResultInfo,
    WinnerInfo,
)
from coaster.session.models import GameData

if TYPE_CHECKING:
    import random
    from collections.abc import Sequence

    from coaster.logic.catalog import Coaster
    from coaster.logic.round import RoundState
    from coaster.logic.scoring import RoundOutcome
    from coaster.logic.settings import SettingsUpdate
    from coaster.session.broadcast import RoomBroadcaster
    from coaster.session.models import Room
    from coaster.session.presence import PresenceRegistry
    from coaster.session.room_registry import RoomRegistry

logger = structlog.get_logger()

MIN_PLAYERS_TO_START = 2

TIMER_ANNOUNCEMENT = "announcement"
TIMER_DEADLINE = "deadline"
TIMER_GRACE = "grace"
TIMER_RESULTS = "results"
TIMER_SELECTION_RETRY = "selection_retry"


class RoundOrchestrator:
    def __init__(
        self,
        registry: RoomRegistry,
        presence: PresenceRegistry,
        broadcaster: RoomBroadcaster,
        catalog: Sequence[Coaster],
        rng: random.Random,
        timer_config: TimerConfig | None = None,
    ) -> None:
        self._registry = registry
        self._presence = presence
        self._broadcaster = broadcaster
        self._catalog = catalog
        self._rng = rng
        self._timer_config = timer_config or TimerConfig()

    # --- Host actions ---

    async def start_game(self, room: Room, user_id: int) -> None:
        self._require_host(room, user_id, "Only the room host can start the game.")
        if room.is_playing:
            raise InvalidStateError("Game is already in progress.")
        if room.member_count < MIN_PLAYERS_TO_START:
            raise InvalidStateError(f"Need at least {MIN_PLAYERS_TO_START} players to start.")

        config = room.config
        game = GameData(
            round_time_ms=config.round_time_ms,
            use_imperial=config.use_imperial,
            difficulty_mode=config.difficulty_mode,
            health=dict.fromkeys(room.members, config.starting_health),
            streaks=dict.fromkeys(room.members, 0),
        )
        room.game = game
        room.state = RoomState.PLAYING
        logger.info("game started", room_code=room.code, players=room.member_count)

        await self._broadcaster.to_room(
            room,
            GameStartedMessage(message=f"Game started in room {room.code}!"),
        )
        await self._broadcaster.snapshot(room)
        room.timer.start(
            self._timer_config.announcement_seconds,
            lambda: self._on_round_due(room, game),
            label=TIMER_ANNOUNCEMENT,
        )

    async def end_game(self, room: Room, user_id: int) -> None:
        """Host-forced end: back to the lobby with no winner."""
        self._require_host(room, user_id, "Only the room host can end the game.")
        if not room.is_playing:
            raise InvalidStateError("No game is currently in progress.")

        room.timer.cancel()
        self._return_to_lobby(room)
        logger.info("game ended by host", room_code=room.code)
        await self._broadcaster.to_room(
            room,
            GameEndedMessage(message="Game has been ended by the host."),
        )
        await self._broadcaster.snapshot(room)

    async def update_settings(self, room: Room, user_id: int, update: SettingsUpdate) -> None:
        """Apply a partial config. Running games keep the values they started with."""
        self._require_host(room, user_id, "Only the room host can change settings.")
        if update.max_players is not None and room.is_public and room.member_count > 1:
            raise InvalidStateError("The player limit of a public room cannot change once others have joined.")

        config = room.config.updated(update)
        if config.max_players < room.member_count:
            config = config.model_copy(update={"max_players": room.member_count})
        room.config = config
        logger.info("room settings updated", room_code=room.code, **update.model_dump(exclude_none=True))
        await self._broadcaster.snapshot(room)

    # --- Player actions ---

    async def submit_answer(self, room: Room, user_id: int, coaster_id: int | str) -> None:
        game = room.game
        if not room.is_playing or game is None or game.current_round is None or not game.round_active:
            raise InvalidStateError("No active round!")
        if game.health.get(user_id, 0) <= 0:
            raise InvalidStateError("You are eliminated!")
        round_state = game.current_round
        if round_state.has_answered(user_id):
            raise InvalidStateError("You already answered this round!")

        round_state.answers[user_id] = coaster_id
        await self._broadcaster.to_room(
            room,
            PlayerAnsweredMessage(user_id=user_id, username=self._presence.display_name(user_id)),
        )
        self._maybe_resolve_early(room)

    async def handle_departure(self, room: Room) -> None:
        """A member left a playing room: the round may now be fully answered."""
        if room.is_playing and room.game is not None and room.game.round_active:
            self._maybe_resolve_early(room)

    # --- Round flow ---

    async def start_new_round(self, room: Room) -> None:
        game = room.game
        if not room.is_playing or game is None:
            return

        round_number = game.round_number + 1
        round_state = build_round(self._catalog, round_number, game.difficulty_mode, self._rng)
        if round_state is None:
            logger.warning("round start deferred", room_code=room.code, round_number=round_number)
            room.timer.start(
                self._timer_config.selection_retry_seconds,
                lambda: self._on_round_due(room, game),
                label=TIMER_SELECTION_RETRY,
            )
            return

        game.round_number = round_number
        game.current_round = round_state
        criterion = round_state.criterion
        logger.info(
            "round started",
            room_code=room.code,
            round_number=round_number,
            criterion=criterion.name,
        )

        await self._broadcaster.to_room(
            room,
            NewRoundMessage(
                round_number=round_number,
                coasters=[CoasterCard(**c.public_fields()) for c in round_state.candidates],
                criterion=CriterionPrompt(
                    type=criterion.name,
                    display_value=criterion.display_value(use_imperial=game.use_imperial),
                ),
                time_limit_ms=game.round_time_ms,
            ),
        )
        room.timer.start(
            game.round_time_ms / 1000,
            lambda: self._on_round_timeout(room, game, round_state),
            label=TIMER_DEADLINE,
        )

    async def end_round(self, room: Room) -> None:
        game = room.game
        if game is None or game.current_round is None or not game.current_round.active:
            return
        round_state = game.current_round
        round_state.active = False
        room.timer.cancel()

        correct = round_state.correct_coaster
        outcome = score_round(room.members, round_state.answers, correct.id, game.health, game.streaks)
        game.health = dict(outcome.health)
        game.streaks = dict(outcome.streaks)
        logger.info(
            "round ended",
            room_code=room.code,
            round_number=round_state.round_number,
            alive=len(outcome.alive),
        )

        await self._broadcaster.to_room(room, self._round_ended_event(round_state, outcome))
        await self._broadcaster.snapshot(room)

        if outcome.game_over:
            room.timer.start(
                self._timer_config.results_display_seconds,
                lambda: self._on_game_over(room, game),
                label=TIMER_RESULTS,
            )
        else:
            room.timer.start(
                self._timer_config.results_display_seconds,
                lambda: self._on_round_due(room, game),
                label=TIMER_RESULTS,
            )

    async def finish_game(self, room: Room) -> None:
        """Natural end of a game: announce the winner, if any, and return to the lobby."""
        game = room.game
        alive = alive_members(room.members, game.health) if game is not None else []
        winner_id = alive[0] if len(alive) == 1 else None
        self._return_to_lobby(room)

        if winner_id is None:
            message = GameEndedMessage(message="Game over! Nobody won!")
        else:
            name = self._presence.display_name(winner_id)
            message = GameEndedMessage(message=f"{name} wins!", winner=WinnerInfo(user_id=winner_id, username=name))
        logger.info("game finished", room_code=room.code, winner_user_id=winner_id)

        await self._broadcaster.to_room(room, message)
        await self._broadcaster.snapshot(room)

    # --- Timer callbacks ---

    def _is_current(self, room: Room, game: GameData) -> bool:
        return self._registry.is_alive(room) and room.game is game and room.is_playing

    async def _on_round_due(self, room: Room, game: GameData) -> None:
        async with room.lock:
            if self._is_current(room, game):
                await self.start_new_round(room)

    async def _on_round_timeout(self, room: Room, game: GameData, round_state: RoundState) -> None:
        async with room.lock:
            if self._is_current(room, game) and game.current_round is round_state and round_state.active:
                await self.end_round(room)

    async def _on_game_over(self, room: Room, game: GameData) -> None:
        async with room.lock:
            if self._is_current(room, game):
                await self.finish_game(room)

    # --- Helpers ---

    def _maybe_resolve_early(self, room: Room) -> None:
        """Swap the deadline for the short grace timer once every alive member has answered."""
        game = room.game
        if game is None or game.current_round is None or room.timer.label == TIMER_GRACE:
            return
        round_state = game.current_round
        alive = alive_members(room.members, game.health)
        if not all(round_state.has_answered(u) for u in alive):
            return
        logger.debug("all players answered", room_code=room.code, round_number=round_state.round_number)
        room.timer.start(
            self._timer_config.grace_seconds,
            lambda: self._on_round_timeout(room, game, round_state),
            label=TIMER_GRACE,
        )

    def _round_ended_event(self, round_state: RoundState, outcome: RoundOutcome) -> RoundEndedMessage:
        criterion = round_state.criterion
        results = []
        for result in outcome.results:
            answered = round_state.find_candidate(result.answer)
            results.append(
                RoundResultInfo(
                    user_id=result.user_id,
                    username=self._presence.display_name(result.user_id),
                    answer=result.answer,
                    answered_coaster=answered.model_dump() if answered is not None else None,
                    is_correct=result.is_correct,
                    too_slow=result.too_slow,
                    health=result.health,
                    streak=result.streak,
                ),
            )
        return RoundEndedMessage(
            round_number=round_state.round_number,
            correct_coaster_id=criterion.correct_coaster_id,
            correct_coaster=round_state.correct_coaster.model_dump(),
            all_coasters=[c.model_dump() for c in round_state.candidates],
            results=results,
            criterion=CriterionReveal(key=criterion.key, type=criterion.name),
            is_landmark=criterion.is_landmark,
        )

    @staticmethod
    def _return_to_lobby(room: Room) -> None:
        room.state = RoomState.LOBBY
        if room.game is not None and room.game.current_round is not None:
            room.game.current_round.active = False

    @staticmethod
    def _require_host(room: Room, user_id: int, message: str) -> None:
        if room.host_user_id != user_id:
            raise NotHostError(message)
