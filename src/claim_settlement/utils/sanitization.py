"""Sanitization of audit payloads before they reach the audit sink."""

import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from claim_settlement.config.settings import AUDIT_MAX_MESSAGE_BYTES

TRUNCATION_MARKER = "...[truncated]"

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def _sanitize_text(text: str | None) -> str:
    """Strip control characters (keeps tab, newline, carriage return)."""
    if text is None or not isinstance(text, str):
        return ""
    return _CONTROL_CHARS.sub("", text)


def truncate_utf8(text: str, max_bytes: int = AUDIT_MAX_MESSAGE_BYTES) -> str:
    """Truncate ``text`` so its UTF-8 encoding fits in ``max_bytes``.

    Oversized text keeps as much of its head as fits and ends with
    ``TRUNCATION_MARKER``. Multi-byte characters are never split.
    """
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    marker = TRUNCATION_MARKER.encode("utf-8")
    keep = max(max_bytes - len(marker), 0)
    head = encoded[:keep].decode("utf-8", errors="ignore")
    return head + TRUNCATION_MARKER


def sanitize_message(text: str | None, max_bytes: int = AUDIT_MAX_MESSAGE_BYTES) -> str:
    return truncate_utf8(_sanitize_text(text), max_bytes)


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def sanitize_context(context: dict[str, Any] | None) -> dict[str, Any]:
    """
    Make an audit context snapshot JSON-serializable.

    Decimals become strings, dates ISO strings, enums their values and any
    other object its ``str()``. Returns a new dict; does not mutate the input.
    """
    if not context:
        return {}
    return _json_safe(context)
