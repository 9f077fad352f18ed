"""Centralized configuration from environment variables with defaults."""

import os
from decimal import Decimal, InvalidOperation
from typing import Any

from dotenv import load_dotenv

load_dotenv()


def _float(key: str, default: float) -> float:
    raw = os.environ.get(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _int(key: str, default: int) -> int:
    raw = os.environ.get(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _decimal(key: str, default: str) -> Decimal:
    raw = os.environ.get(key)
    if raw is None:
        return Decimal(default)
    try:
        return Decimal(raw.strip())
    except InvalidOperation:
        return Decimal(default)


# ---------------------------------------------------------------------------
# Approval tiers
# ---------------------------------------------------------------------------

MANAGER_APPROVAL_THRESHOLD = _decimal("APPROVAL_MANAGER_THRESHOLD", "5000")
SENIOR_MANAGER_APPROVAL_THRESHOLD = _decimal("APPROVAL_SENIOR_MANAGER_THRESHOLD", "25000")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

VALIDATION_MIN_DOCUMENTS = _int("VALIDATION_MIN_DOCUMENTS", 1)


# ---------------------------------------------------------------------------
# Fraud detection
# ---------------------------------------------------------------------------

def get_fraud_config() -> dict[str, Any]:
    """Fraud scoring weights, windows and the advisory flag threshold."""
    return {
        "recent_claim_days": _int("FRAUD_RECENT_CLAIM_DAYS", 30),
        "recent_claim_score": _float("FRAUD_RECENT_CLAIM_SCORE", 0.30),
        "amount_multiple": _float("FRAUD_AMOUNT_MULTIPLE", 3.0),
        "amount_multiple_score": _float("FRAUD_AMOUNT_MULTIPLE_SCORE", 0.25),
        "new_policy_days": _int("FRAUD_NEW_POLICY_DAYS", 30),
        "new_policy_score": _float("FRAUD_NEW_POLICY_SCORE", 0.20),
        "coverage_ratio": _float("FRAUD_COVERAGE_RATIO", 0.9),
        "coverage_ratio_score": _float("FRAUD_COVERAGE_RATIO_SCORE", 0.20),
        "flag_threshold": _float("FRAUD_FLAG_THRESHOLD", 0.75),
    }


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------

def get_circuit_config() -> dict[str, Any]:
    """Thresholds for the per-endpoint circuit breakers."""
    return {
        "failure_threshold": _int("CIRCUIT_FAILURE_THRESHOLD", 5),
        "success_threshold": _int("CIRCUIT_SUCCESS_THRESHOLD", 2),
        "timeout_window": _float("CIRCUIT_TIMEOUT_WINDOW_SECONDS", 60.0),
    }


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

PAYMENT_ENDPOINT = os.environ.get("PAYMENT_ENDPOINT_NAME", "payment")


def get_settlement_config() -> dict[str, Any]:
    """Timeout and retry policy for payment calls."""
    return {
        "endpoint": PAYMENT_ENDPOINT,
        "timeout": _float("SETTLEMENT_TIMEOUT_SECONDS", 30.0),
        "max_retries": _int("SETTLEMENT_MAX_RETRIES", 3),
        "backoff_base": _float("SETTLEMENT_BACKOFF_BASE_SECONDS", 1.0),
        "gateway_url": os.environ.get("PAYMENT_GATEWAY_URL", ""),
        "api_key": os.environ.get("PAYMENT_GATEWAY_API_KEY") or None,
    }


# ---------------------------------------------------------------------------
# Bulk processing
# ---------------------------------------------------------------------------

BULK_MAX_WORKERS = _int("BULK_MAX_WORKERS", 8)
BULK_TIMEOUT_SECONDS = _float("BULK_TIMEOUT_SECONDS", 0.0)

# In-process settlement metrics keep at most this many claims (oldest evicted first)
METRICS_MAX_CLAIMS = _int("METRICS_MAX_CLAIMS", 10_000)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

AUDIT_MAX_MESSAGE_BYTES = _int("AUDIT_MAX_MESSAGE_BYTES", 131_072)

# Critical errors and batch summaries go to this webhook when set; otherwise
# they are stored in the notifications outbox table.
NOTIFICATION_WEBHOOK_URL = os.environ.get("NOTIFICATION_WEBHOOK_URL", "")
