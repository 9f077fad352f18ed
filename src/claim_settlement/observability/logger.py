"""Structured logging with claim context for the settlement pipeline.

This module provides:
- ClaimLogger: a logger adapter that stamps claim_id/policy_id on every message
- claim_context: a context manager that sets claim context for the current thread
- log_claim_event: helper for logging structured pipeline events

Output format and level come from ``CLAIM_SETTLEMENT_LOG_FORMAT`` (``human`` or
``json``) and ``CLAIM_SETTLEMENT_LOG_LEVEL``.
"""

import json
import logging
import os
import sys
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

# Bulk workers run on their own threads, so context is per thread.
_context = threading.local()

# Context keys rendered by both formatters, with their human-readable labels.
_CONTEXT_LABELS = (("claim_id", "claim"), ("policy_id", "policy"), ("batch_id", "batch"))


def _get_claim_context() -> dict[str, Any]:
    return getattr(_context, "claim_data", {})


def _set_claim_context(data: dict[str, Any]) -> None:
    _context.claim_data = data


def _context_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Thread context overlaid with the record's own claim_id; empty values dropped."""
    fields = {key: _get_claim_context().get(key) for key, _ in _CONTEXT_LABELS}
    record_claim = getattr(record, "claim_id", None)
    if record_claim:
        fields["claim_id"] = record_claim
    return {key: value for key, value in fields.items() if value}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {"level": record.levelname, "logger": record.name}
        if self.include_timestamp:
            entry["timestamp"] = datetime.fromtimestamp(record.created, timezone.utc).isoformat()
        entry["message"] = record.getMessage()
        entry.update(_context_fields(record))

        event_data = getattr(record, "extra_data", None)
        if event_data:
            entry["data"] = event_data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry["source"] = f"{record.filename}:{record.lineno} ({record.funcName})"
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``<time> <LEVEL> [claim=..., policy=...] <logger>: <message>``"""

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created, timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        fields = _context_fields(record)
        tags = ", ".join(f"{label}={fields[key]}" for key, label in _CONTEXT_LABELS if key in fields)
        prefix = f"{when} {record.levelname:8}"
        if tags:
            prefix += f" [{tags}]"

        text = record.getMessage()
        event_data = getattr(record, "extra_data", None)
        if event_data:
            text = f"{text} | {event_data}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return f"{prefix} {record.name}: {text}"


class ClaimLogger(logging.LoggerAdapter):
    """Logger adapter that adds a fixed claim id to every record it emits."""

    def __init__(self, logger: logging.Logger, claim_id: str | None = None):
        super().__init__(logger, {})
        self._claim_id = claim_id

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = kwargs.setdefault("extra", {})
        if self._claim_id:
            extra.setdefault("claim_id", self._claim_id)
        return msg, kwargs

    def log_event(self, event: str, level: int = logging.INFO, **data: Any) -> None:
        """Log a structured event; ``claim_id`` in ``data`` overrides the bound one."""
        claim_id = data.pop("claim_id", None) or self._claim_id
        log_claim_event(self, event, claim_id=claim_id, level=level, **data)


def _build_handler(structured: bool | None) -> logging.Handler:
    if structured is None:
        structured = os.environ.get("CLAIM_SETTLEMENT_LOG_FORMAT", "human").lower() == "json"
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter() if structured else HumanReadableFormatter())
    return handler


def get_logger(
    name: str,
    claim_id: str | None = None,
    structured: bool | None = None,
) -> ClaimLogger:
    """Get a ClaimLogger, configuring the underlying logger on first use.

    Args:
        name: Logger name (typically __name__)
        claim_id: Optional claim ID to attach to all logs
        structured: JSON output if True, human-readable if False, env-driven if None
    """
    base = logging.getLogger(name)
    if not base.handlers:
        base.addHandler(_build_handler(structured))
        level_name = os.environ.get("CLAIM_SETTLEMENT_LOG_LEVEL", "INFO").upper()
        base.setLevel(getattr(logging, level_name, logging.INFO))
        # Each configured logger writes its own lines; parents would repeat them.
        base.propagate = False
    return ClaimLogger(base, claim_id)


@contextmanager
def claim_context(
    claim_id: str,
    policy_id: str | None = None,
    **extra: Any,
):
    """Set claim context on all logs emitted by this thread within the block.

    Nested blocks inherit keys they do not override (a batch id set by the
    bulk runner stays visible inside the per-claim block).

    Usage:
        with claim_context(claim_id="CLM-123", policy_id="POL-001"):
            logger.info("Routing claim")
    """
    outer = _get_claim_context()
    _set_claim_context({**outer, "claim_id": claim_id, "policy_id": policy_id, **extra})
    try:
        yield
    finally:
        _set_claim_context(outer)


def log_claim_event(
    logger: logging.Logger | ClaimLogger,
    event: str,
    claim_id: str | None = None,
    level: int = logging.INFO,
    **data: Any,
) -> None:
    """Log a pipeline event (e.g. ``claim_routed``, ``settlement_attempt``) with structured data."""
    pairs = " ".join(f"{key}={value}" for key, value in data.items())
    extra: dict[str, Any] = {"extra_data": {"event": event, **data}}
    if claim_id:
        extra["claim_id"] = claim_id
    logger.log(level, f"[{event}] {pairs}" if pairs else f"[{event}]", extra=extra)
