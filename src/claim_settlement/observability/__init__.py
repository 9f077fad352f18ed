"""Observability for the settlement pipeline.

This module provides:
- Structured logging with claim ID context
- The audit trail (AuditLogger) and notification sinks
- Settlement attempt and latency metrics
"""

from claim_settlement.observability.audit import (
    AuditLogger,
    AuditSink,
    BufferedAuditLogger,
    NotificationSink,
)
from claim_settlement.observability.logger import (
    ClaimLogger,
    claim_context,
    get_logger,
    log_claim_event,
)
from claim_settlement.observability.metrics import (
    SettlementMetrics,
    get_metrics,
    reset_metrics,
)
from claim_settlement.observability.notifications import (
    LoggingNotificationSink,
    WebhookNotificationSink,
)

__all__ = [
    # Audit
    "AuditLogger",
    "AuditSink",
    "BufferedAuditLogger",
    "NotificationSink",
    "LoggingNotificationSink",
    "WebhookNotificationSink",
    # Logger
    "ClaimLogger",
    "get_logger",
    "claim_context",
    "log_claim_event",
    # Metrics
    "SettlementMetrics",
    "get_metrics",
    "reset_metrics",
]
