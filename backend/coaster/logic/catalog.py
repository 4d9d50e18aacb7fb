"""
Coaster catalog: the immutable dataset every round draws its candidates from.

The dataset is a JSON document of the form ``{"coasters": [...]}``. It is loaded
once before the server accepts connections; anything wrong with it raises
CatalogError so startup aborts instead of running with a degraded catalog.
"""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from coaster.logic.exceptions import CatalogError

logger = structlog.get_logger()

CANDIDATES_PER_ROUND = 3

StatValue = int | float | str | None


class CoasterStats(BaseModel):
    """Sparse attribute map. Any attribute may be missing, null, zero or empty."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    height: float | None = None
    speed: float | None = None
    inversions: int | None = None
    year: int | None = None
    length: float | None = None
    park: str | None = None

    def get(self, key: str) -> StatValue:
        return getattr(self, key, None)


class Coaster(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: int | str
    name: str = Field(min_length=1)
    park: str = ""
    image: str | None = None
    main_picture: str | None = Field(default=None, alias="mainPicture")
    stats: CoasterStats = Field(default_factory=CoasterStats)

    def public_fields(self) -> dict[str, object]:
        """Fields shown to players while a round is running (no stats)."""
        return {
            "id": self.id,
            "name": self.name,
            "park": self.park,
            "image": self.image,
            "main_picture": self.main_picture,
        }


class _CatalogDocument(BaseModel):
    coasters: list[Coaster]


def parse_catalog(data: object) -> tuple[Coaster, ...]:
    """Validate a decoded dataset document and return its coasters."""
    try:
        document = _CatalogDocument.model_validate(data)
    except ValidationError as e:
        raise CatalogError(f"malformed coaster dataset: {e}") from e

    coasters = tuple(document.coasters)
    if len(coasters) < CANDIDATES_PER_ROUND:
        raise CatalogError(
            f"coaster dataset needs at least {CANDIDATES_PER_ROUND} coasters, got {len(coasters)}",
        )
    ids = [c.id for c in coasters]
    if len(set(ids)) != len(ids):
        raise CatalogError("coaster dataset contains duplicate ids")
    return coasters


def load_catalog(path: Path | str) -> tuple[Coaster, ...]:
    """Read and validate the coaster dataset at the given path."""
    file_path = Path(path)
    try:
        raw = file_path.read_text(encoding="utf-8")
    except OSError as e:
        raise CatalogError(f"cannot read coaster dataset {file_path}: {e}") from e
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CatalogError(f"coaster dataset {file_path} is not valid JSON: {e}") from e

    coasters = parse_catalog(data)
    logger.info("coaster catalog loaded", path=str(file_path), coasters=len(coasters))
    return coasters
