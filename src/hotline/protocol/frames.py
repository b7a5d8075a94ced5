"""Frame decoding and classification.

The relay never rejects a connection over a bad frame: anything that does
not decode to a JSON object, or does not match a known shape, is simply
dropped by the caller.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from .messages import APPLICATION_ROLES, EVENT_TYPE, REGISTER_TYPE


class FrameKind(str, Enum):
    """Shapes an inbound frame can take, in matching priority order."""

    REGISTER = "register"
    RESPONSE = "response"
    EVENT = "event"
    REQUEST = "request"
    UNKNOWN = "unknown"


def parse_frame(raw: str | bytes) -> dict[str, Any] | None:
    """Decode a raw WebSocket frame into a JSON object.

    Returns None for anything that is not valid UTF-8 JSON or not an object.
    """
    try:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        frame = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(frame, dict):
        return None
    return frame


def encode_frame(frame: dict[str, Any]) -> str:
    """Encode an outbound frame."""
    return json.dumps(frame, ensure_ascii=False)


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


def classify(frame: dict[str, Any]) -> FrameKind:
    """Classify a decoded frame.

    Order matters: a registration or event frame also carries `type`, and a
    response carries `id`, so the more specific shapes are matched first.
    """
    if (
        frame.get("type") == REGISTER_TYPE
        and frame.get("role") in APPLICATION_ROLES
        and _non_empty_str(frame.get("appId"))
    ):
        return FrameKind.REGISTER

    if "ok" in frame and _non_empty_str(frame.get("id")):
        return FrameKind.RESPONSE

    if frame.get("type") == EVENT_TYPE and _non_empty_str(frame.get("event")):
        return FrameKind.EVENT

    if _non_empty_str(frame.get("id")) and _non_empty_str(frame.get("type")):
        return FrameKind.REQUEST

    return FrameKind.UNKNOWN
