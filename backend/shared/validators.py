"""Validation helpers shared by the settings models."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic_settings import EnvSettingsSource

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo


def parse_string_list(value: str | list[str]) -> list[str]:
    """Parse a list of strings from a settings value.

    Accepts a list (returned as-is), a JSON array string such as
    '["a","b"]', or a comma-separated string such as 'a,b'.
    Raises ValueError for blank input, malformed JSON, and lists with
    no items.
    """
    if isinstance(value, list):
        items = value
    else:
        stripped = value.strip()
        if not stripped:
            raise ValueError("String list value must not be empty")
        items = _parse_json_list(stripped) if stripped.startswith("[") else _split_csv(stripped)

    if not items:
        raise ValueError("String list value must not be empty")
    return items


def parse_cors_origins(value: str | list[str]) -> list[str]:
    """Origins allowed to open the websocket from a browser. At least one is required."""
    origins = parse_string_list(value)
    for origin in origins:
        if origin != "*" and not origin.startswith(("http://", "https://")):
            raise ValueError(f"CORS origin must start with http:// or https://, got {origin!r}")
    return origins


def _parse_json_list(raw: str) -> list[str]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON array: {e}") from e
    if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
        raise ValueError("JSON value must be an array of strings")
    return parsed


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class CorsEnvSettingsSource(EnvSettingsSource):
    """Env settings source that hands ``cors_origins`` to its validator as a raw string.

    pydantic-settings JSON-decodes list fields read from the environment
    before validators run, which rejects the comma-separated form.
    """

    def prepare_field_value(
        self,
        field_name: str,
        field: FieldInfo,
        value: Any,  # noqa: ANN401
        value_is_complex: bool,  # noqa: FBT001
    ) -> Any:  # noqa: ANN401
        if field_name == "cors_origins" and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)
