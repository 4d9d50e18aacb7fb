"""
Wire codec for game events.

A websocket frame carries exactly one MessagePack map. Outgoing events are
pydantic models (or maps already rendered from one); incoming frames are
bounded before unpacking and handed to the router as plain maps.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import msgpack
from pydantic import BaseModel

Event = BaseModel | Mapping[str, Any]


class MalformedFrameError(ValueError):
    """A client frame that does not unpack to an event map."""


@dataclass(frozen=True, slots=True)
class FrameLimits:
    """Upper bounds applied while unpacking a client frame."""

    max_frame_bytes: int = 16 * 1024
    max_text_len: int = 4 * 1024
    max_items: int = 64
    max_fields: int = 32


# A client frame is a username, a room code, a chat line or a settings form.
CLIENT_FRAME_LIMITS = FrameLimits()


def _to_wire(value: object) -> object:
    # health and streak maps are keyed by user id; msgpack maps need string keys
    if isinstance(value, Mapping):
        return {str(k) if isinstance(k, int) else k: _to_wire(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_wire(item) for item in value]
    return value


def pack_event(event: Event) -> bytes:
    payload = event.model_dump() if isinstance(event, BaseModel) else event
    return msgpack.packb(_to_wire(payload))


def unpack_event(frame: bytes, limits: FrameLimits = CLIENT_FRAME_LIMITS) -> dict[str, Any]:
    """
    Unpack one client frame into an event map.

    Raises MalformedFrameError for oversized frames, invalid MessagePack and
    anything that is not a map. Clients never send binary or extension
    payloads, so those are refused outright.
    """
    if len(frame) > limits.max_frame_bytes:
        raise MalformedFrameError(f"frame too large: {len(frame)} bytes (max {limits.max_frame_bytes})")
    try:
        event = msgpack.unpackb(
            frame,
            raw=False,
            max_str_len=limits.max_text_len,
            max_bin_len=0,
            max_ext_len=0,
            max_array_len=limits.max_items,
            max_map_len=limits.max_fields,
        )
    except (msgpack.UnpackException, ValueError, TypeError) as e:
        raise MalformedFrameError(f"unreadable frame: {e}") from e

    if not isinstance(event, dict):
        raise MalformedFrameError(f"expected an event map, got {type(event).__name__}")
    return event
