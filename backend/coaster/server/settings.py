"""Game server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from shared.validators import CorsEnvSettingsSource, parse_cors_origins

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class GameServerSettings(BaseSettings):
    model_config = {"env_prefix": "COASTER_"}

    catalog_path: str = Field(default="backend/data/coasterData.json", min_length=1)
    log_dir: str = Field(default="backend/logs/server", min_length=1)
    cors_origins: list[str] = ["http://localhost:3000"]

    # Round flow delays, in milliseconds.
    announcement_delay_ms: int = Field(default=2000, ge=0)
    grace_period_ms: int = Field(default=1000, ge=0)
    results_display_ms: int = Field(default=5000, ge=0)
    selection_retry_ms: int = Field(default=2000, ge=0)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_cors_origins(v)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, CorsEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings
