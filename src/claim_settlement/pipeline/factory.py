"""Default wiring of the pipeline against the SQLite stores."""

from typing import Optional

from claim_settlement.config.settings import (
    NOTIFICATION_WEBHOOK_URL,
    get_settlement_config,
)
from claim_settlement.db.repository import (
    AuditRepository,
    ClaimRepository,
    NotificationRepository,
    PolicyRepository,
)
from claim_settlement.observability.audit import AuditLogger, NotificationSink
from claim_settlement.observability.notifications import WebhookNotificationSink
from claim_settlement.pipeline.bulk import BulkSettlementProcessor
from claim_settlement.pipeline.circuit_breaker import CircuitBreakerRegistry
from claim_settlement.pipeline.gateway import (
    HttpPaymentGateway,
    PaymentGateway,
    SimulatedPaymentGateway,
)
from claim_settlement.pipeline.orchestrator import SettlementOrchestrator
from claim_settlement.pipeline.settlement import SettlementClient

# Shared across orchestrators built in one process so breaker state survives
_breakers: Optional[CircuitBreakerRegistry] = None


def get_breakers() -> CircuitBreakerRegistry:
    global _breakers
    if _breakers is None:
        _breakers = CircuitBreakerRegistry()
    return _breakers


def default_gateway() -> PaymentGateway:
    """HTTP gateway when ``PAYMENT_GATEWAY_URL`` is set, else an always-approving simulator."""
    cfg = get_settlement_config()
    if cfg["gateway_url"]:
        return HttpPaymentGateway(cfg["gateway_url"], api_key=cfg["api_key"])
    return SimulatedPaymentGateway()


def default_notifier(db_path: Optional[str] = None) -> NotificationSink:
    if NOTIFICATION_WEBHOOK_URL:
        return WebhookNotificationSink(NOTIFICATION_WEBHOOK_URL)
    return NotificationRepository(db_path)


def build_orchestrator(
    db_path: Optional[str] = None,
    gateway: Optional[PaymentGateway] = None,
    notifier: Optional[NotificationSink] = None,
    breakers: Optional[CircuitBreakerRegistry] = None,
) -> SettlementOrchestrator:
    audit = AuditLogger(AuditRepository(db_path), notifier or default_notifier(db_path))
    client = SettlementClient(gateway or default_gateway(), breakers or get_breakers(), audit)
    return SettlementOrchestrator(ClaimRepository(db_path), PolicyRepository(db_path), audit, client)


def build_bulk_processor(
    db_path: Optional[str] = None,
    gateway: Optional[PaymentGateway] = None,
    max_workers: Optional[int] = None,
) -> BulkSettlementProcessor:
    return BulkSettlementProcessor(build_orchestrator(db_path, gateway), max_workers=max_workers)
