"""
Round construction: draw candidate triples and attach a criterion.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from coaster.logic.catalog import CANDIDATES_PER_ROUND
from coaster.logic.criteria import select_criterion

if TYPE_CHECKING:
    import random
    from collections.abc import Sequence

    from coaster.logic.catalog import Coaster
    from coaster.logic.criteria import Criterion
    from coaster.logic.enums import DifficultyMode

logger = structlog.get_logger()

MAX_CANDIDATE_DRAWS = 20


@dataclass
class RoundState:
    """One round of a game.

    answers maps user id -> chosen coaster id; the first answer per user wins.
    """

    round_number: int
    candidates: tuple[Coaster, ...]
    criterion: Criterion
    answers: dict[int, int | str] = field(default_factory=dict)
    started_at: float = field(default_factory=time.monotonic)
    active: bool = True

    @property
    def correct_coaster(self) -> Coaster:
        return next(c for c in self.candidates if c.id == self.criterion.correct_coaster_id)

    def find_candidate(self, coaster_id: int | str | None) -> Coaster | None:
        if coaster_id is None:
            return None
        return next((c for c in self.candidates if c.id == coaster_id), None)

    def has_answered(self, user_id: int) -> bool:
        return user_id in self.answers


def draw_candidates(catalog: Sequence[Coaster], rng: random.Random) -> tuple[Coaster, ...]:
    """Draw three distinct coasters uniformly at random."""
    return tuple(rng.sample(list(catalog), CANDIDATES_PER_ROUND))


def build_round(
    catalog: Sequence[Coaster],
    round_number: int,
    difficulty: DifficultyMode,
    rng: random.Random,
    max_draws: int = MAX_CANDIDATE_DRAWS,
) -> RoundState | None:
    """
    Build a round from fresh candidate triples.

    Returns None when none of the drawn triples yields a criterion with a
    unique answer; the caller retries later with new draws.
    """
    for _ in range(max_draws):
        candidates = draw_candidates(catalog, rng)
        criterion = select_criterion(candidates, round_number, difficulty, rng)
        if criterion is not None:
            return RoundState(round_number=round_number, candidates=candidates, criterion=criterion)

    logger.warning("no valid criterion found", round_number=round_number, draws=max_draws)
    return None
