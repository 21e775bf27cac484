"""Structural checks for signed bearer credentials."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

import orjson

logger = logging.getLogger(__name__)

_PLACEHOLDERS = {"undefined", "null", "none"}


def decode_token_payload(token: str) -> dict[str, Any] | None:
    """Return the decoded payload segment, or None when it is not a JSON object."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    segment = parts[1]
    padded = segment + "=" * (-len(segment) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        payload = orjson.loads(raw)
    except (binascii.Error, UnicodeEncodeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


def is_valid_token(token: Any) -> bool:
    if not isinstance(token, str):
        return False
    stripped = token.strip()
    if not stripped or stripped.lower() in _PLACEHOLDERS:
        return False
    if decode_token_payload(stripped) is None:
        logger.debug("token rejected: not a three-segment credential with an object payload")
        return False
    return True


def redact(token: str | None) -> str:
    if not token:
        return "<none>"
    return f"{token[:6]}..."
