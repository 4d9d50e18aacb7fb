"""
Criterion selection: pick an attribute of three candidate coasters that has
exactly one correct answer.

Two question families exist. Range questions reveal a target value and ask
which coaster is closest to it; the tolerance window around the target shrinks
as the game advances. Landmark questions ask for the superlative (tallest,
fastest, ...) and are forced on every fourth round.

All randomness comes from the random.Random passed in by the caller, so a
seeded generator makes selection fully deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from coaster.logic.enums import CriterionFamily, DifficultyMode

if TYPE_CHECKING:
    import random
    from collections.abc import Callable, Sequence

    from coaster.logic.catalog import Coaster, StatValue

LANDMARK_ROUND_INTERVAL = 4
MAX_TARGET_ATTEMPTS = 50

FEET_PER_METER = 3.28084
MPH_PER_KMH = 0.621371

# Rounds over which the tolerance window shrinks to its minimum.
# Zero means the minimum applies from the first round.
PROGRESSION_ROUNDS = {
    DifficultyMode.EASY: 10,
    DifficultyMode.MEDIUM: 5,
    DifficultyMode.HARD: 0,
}

# key -> (base fraction of the value range, reduction at full progression)
_TOLERANCE_FACTORS = {
    "length": (0.5, 0.45),
    "height": (0.4, 0.35),
    "speed": (0.45, 0.40),
    "inversions": (0.3, 0.25),
    "year": (0.3, 0.25),
}


def _number(value: StatValue) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _plain(value: StatValue) -> str:
    return _number(value)


def _meters(value: StatValue) -> str:
    return f"{_number(value)}m"


def _feet(value: StatValue) -> str:
    return f"{float(value) * FEET_PER_METER:.0f}ft"  # type: ignore[arg-type]


def _kmh(value: StatValue) -> str:
    return f"{_number(value)} km/h"


def _mph(value: StatValue) -> str:
    return f"{float(value) * MPH_PER_KMH:.0f} mph"  # type: ignore[arg-type]


@dataclass(frozen=True)
class CriterionType:
    """A question the game can ask about a coaster attribute."""

    name: str
    key: str
    family: CriterionFamily
    metric_format: Callable[[StatValue], str]
    imperial_format: Callable[[StatValue], str]

    def format_value(self, value: StatValue, *, use_imperial: bool) -> str:
        formatter = self.imperial_format if use_imperial else self.metric_format
        return formatter(value)


CRITERIA_TYPES: tuple[CriterionType, ...] = (
    CriterionType("Height", "height", CriterionFamily.RANGE, _meters, _feet),
    CriterionType("Speed", "speed", CriterionFamily.RANGE, _kmh, _mph),
    CriterionType("Inversions", "inversions", CriterionFamily.RANGE, _plain, _plain),
    CriterionType("Year Opened", "year", CriterionFamily.RANGE, _plain, _plain),
    CriterionType("Track Length", "length", CriterionFamily.RANGE, _meters, _feet),
    CriterionType("Park", "park", CriterionFamily.RANGE, _plain, _plain),
    CriterionType("Tallest Coaster", "height", CriterionFamily.LANDMARK, _meters, _feet),
    CriterionType("Fastest Coaster", "speed", CriterionFamily.LANDMARK, _kmh, _mph),
    CriterionType("Most Inversions", "inversions", CriterionFamily.LANDMARK, _plain, _plain),
    CriterionType("Longest Coaster", "length", CriterionFamily.LANDMARK, _meters, _feet),
)

_CRITERIA_BY_NAME = {c.name: c for c in CRITERIA_TYPES}


class Criterion(BaseModel):
    """A selected question together with its unique correct answer."""

    model_config = ConfigDict(frozen=True)

    name: str
    key: str
    value: int | float | str
    correct_coaster_id: int | str
    is_landmark: bool

    @property
    def criterion_type(self) -> CriterionType:
        return _CRITERIA_BY_NAME[self.name]

    def display_value(self, *, use_imperial: bool) -> str:
        return self.criterion_type.format_value(self.value, use_imperial=use_imperial)


def is_landmark_round(round_number: int) -> bool:
    return round_number > 0 and round_number % LANDMARK_ROUND_INTERVAL == 0


def criteria_for_round(round_number: int) -> list[CriterionType]:
    """Return the criterion pool that applies to a round number."""
    family = CriterionFamily.LANDMARK if is_landmark_round(round_number) else CriterionFamily.RANGE
    return [c for c in CRITERIA_TYPES if c.family == family]


def has_valid_value(coaster: Coaster, key: str) -> bool:
    """Absent, null, zero and empty values are all unusable."""
    value = coaster.stats.get(key)
    return value is not None and value != 0 and value != ""


def progression(round_number: int, difficulty: DifficultyMode) -> float:
    """Fraction of the way from the widest to the narrowest tolerance window (0..1)."""
    rounds = PROGRESSION_ROUNDS[difficulty]
    if rounds <= 0:
        return 1.0
    return min(round_number / rounds, 1.0)


def tolerance_for(key: str, value_range: float, progress: float) -> float:
    factors = _TOLERANCE_FACTORS.get(key)
    if factors is None:
        return value_range
    base, reduction = factors
    return value_range * (base - progress * reduction)


def _is_numeric(value: StatValue) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _within_tolerance(value: StatValue, target: StatValue, tolerance: float) -> bool:
    # Non-numeric attributes (park names) have no distance, so nothing is ever close.
    if not (_is_numeric(value) and _is_numeric(target)):
        return False
    return abs(value - target) <= tolerance  # type: ignore[operator]


def _select_landmark(coasters: Sequence[Coaster], criterion_type: CriterionType) -> Criterion:
    key = criterion_type.key
    # max() keeps the first coaster on ties; a tie resolves to whichever comes first.
    winner = max(coasters, key=lambda c: c.stats.get(key))  # type: ignore[arg-type, return-value]
    return Criterion(
        name=criterion_type.name,
        key=key,
        value=winner.stats.get(key),  # type: ignore[arg-type]
        correct_coaster_id=winner.id,
        is_landmark=True,
    )


def _select_range(
    coasters: Sequence[Coaster],
    criterion_type: CriterionType,
    progress: float,
    rng: random.Random,
) -> Criterion | None:
    key = criterion_type.key
    values = [c.stats.get(key) for c in coasters]
    numeric = all(_is_numeric(v) for v in values)
    value_range = (max(values) - min(values)) if numeric else 0.0  # type: ignore[type-var, operator]
    tolerance = tolerance_for(key, value_range, progress)

    for _ in range(MAX_TARGET_ATTEMPTS):
        target = rng.choice(coasters)
        target_value = target.stats.get(key)
        matches = [c for c in coasters if _within_tolerance(c.stats.get(key), target_value, tolerance)]
        if len(matches) == 1:
            return Criterion(
                name=criterion_type.name,
                key=key,
                value=target_value,  # type: ignore[arg-type]
                correct_coaster_id=target.id,
                is_landmark=False,
            )
    return None


def select_criterion(
    coasters: Sequence[Coaster],
    round_number: int,
    difficulty: DifficultyMode,
    rng: random.Random,
) -> Criterion | None:
    """
    Pick a criterion with exactly one correct coaster, or None if none exists.

    The applicable pool is shuffled, attributes missing a usable value on any
    candidate are skipped, and each range attribute gets up to
    MAX_TARGET_ATTEMPTS random targets before the next attribute is tried.
    """
    pool = criteria_for_round(round_number)
    rng.shuffle(pool)
    progress = progression(round_number, difficulty)

    for criterion_type in pool:
        if not all(has_valid_value(c, criterion_type.key) for c in coasters):
            continue
        if criterion_type.family == CriterionFamily.LANDMARK:
            return _select_landmark(coasters, criterion_type)
        criterion = _select_range(coasters, criterion_type, progress, rng)
        if criterion is not None:
            return criterion
    return None
