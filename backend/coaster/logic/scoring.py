"""
Round resolution: health and streak deltas, elimination, and the game outcome.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


class PlayerRoundResult(BaseModel):
    """How one member fared in a round."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    answer: int | str | None
    is_correct: bool
    too_slow: bool
    health: int
    streak: int


class RoundOutcome(BaseModel):
    """Result of scoring a round.

    health and streaks are the full post-round maps for every member.
    game_over is True when fewer than two members remain alive;
    winner_id is set only when exactly one does.
    """

    model_config = ConfigDict(frozen=True)

    results: list[PlayerRoundResult]
    health: dict[int, int]
    streaks: dict[int, int]
    alive: list[int]
    game_over: bool
    winner_id: int | None = None


def alive_members(members: Sequence[int], health: Mapping[int, int]) -> list[int]:
    return [m for m in members if health.get(m, 0) > 0]


def score_round(
    members: Sequence[int],
    answers: Mapping[int, int | str],
    correct_coaster_id: int | str,
    health: Mapping[int, int],
    streaks: Mapping[int, int],
) -> RoundOutcome:
    """
    Apply a finished round's answers to every member of the room.

    Already-eliminated members are skipped. A correct answer keeps health and
    extends the streak; a wrong answer or no answer costs one health point and
    resets the streak.
    """
    new_health = dict(health)
    new_streaks = dict(streaks)
    results: list[PlayerRoundResult] = []

    for user_id in members:
        current = new_health.get(user_id, 0)
        if current <= 0:
            continue

        answer = answers.get(user_id)
        too_slow = answer is None
        is_correct = not too_slow and answer == correct_coaster_id

        if is_correct:
            new_streaks[user_id] = new_streaks.get(user_id, 0) + 1
        else:
            new_health[user_id] = current - 1
            new_streaks[user_id] = 0

        results.append(
            PlayerRoundResult(
                user_id=user_id,
                answer=answer,
                is_correct=is_correct,
                too_slow=too_slow,
                health=new_health[user_id],
                streak=new_streaks[user_id],
            ),
        )

    alive = alive_members(members, new_health)
    return RoundOutcome(
        results=results,
        health=new_health,
        streaks=new_streaks,
        alive=alive,
        game_over=len(alive) <= 1,
        winner_id=alive[0] if len(alive) == 1 else None,
    )
