"""Framing and decoding of push channel messages.

The stream is either server-sent events (``data:`` lines terminated by a blank
line) or newline-delimited JSON. Each frame decodes to one of three shapes::

    {"data": {"userId": ..., "notification": {...}}}
    {"userId" | "targetUserId": ..., "notification": {...}}
    {"id": ..., "auction": {...}, "price": ..., "createdAt": ...}

The last form is addressed implicitly to the current user.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jsonschema
import orjson

from ..validation.validator import SchemaRegistry

_SSE_FIELDS = ("event:", "id:", "retry:")


class FrameDecodeError(ValueError):
    """Raised when a frame is not valid JSON or not a well-formed notification."""


@dataclass(frozen=True)
class PushMessage:
    notification: dict[str, Any]
    target_user_id: str | None = None


class FrameBuffer:
    """Accumulates stream lines and yields complete frames."""

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed(self, line: str) -> str | None:
        line = line.rstrip("\r")
        if not line:
            return self.flush()
        if line.startswith(":") or line.startswith(_SSE_FIELDS):
            return None
        if line.startswith("data:"):
            value = line[5:]
            self._data.append(value[1:] if value.startswith(" ") else value)
            return None
        # Bare line: newline-delimited JSON frame
        return line

    def flush(self) -> str | None:
        if not self._data:
            return None
        frame = "\n".join(self._data)
        self._data = []
        return frame


def decode_frame(raw: str | bytes, schemas: SchemaRegistry | None = None) -> PushMessage | None:
    """Return the addressed notification, or None for frames of an unknown shape."""
    try:
        payload = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise FrameDecodeError(f"invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise FrameDecodeError("frame is not a JSON object")

    message = _unwrap(payload)
    if message is None:
        return None
    if schemas is not None:
        try:
            schemas.validate("notification", message.notification)
        except jsonschema.ValidationError as exc:
            raise FrameDecodeError(f"invalid notification: {exc.message}") from exc
    return message


def _unwrap(payload: dict[str, Any]) -> PushMessage | None:
    inner = payload.get("data")
    if isinstance(inner, dict) and inner.get("userId") and isinstance(inner.get("notification"), dict):
        return PushMessage(inner["notification"], str(inner["userId"]))
    target = payload.get("targetUserId") or payload.get("userId")
    if target and isinstance(payload.get("notification"), dict):
        return PushMessage(payload["notification"], str(target))
    if isinstance(payload.get("auction"), dict):
        return PushMessage(payload)
    return None
