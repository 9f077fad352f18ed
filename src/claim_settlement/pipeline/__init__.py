"""Claim settlement pipeline: validation, fraud scoring, routing and settlement."""

from claim_settlement.pipeline.bulk import BatchResult, BulkSettlementProcessor, ItemOutcome
from claim_settlement.pipeline.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitMode,
    CircuitState,
)
from claim_settlement.pipeline.fraud import FraudScorer
from claim_settlement.pipeline.gateway import (
    GatewayResponse,
    HttpPaymentGateway,
    PaymentGateway,
    SimulatedPaymentGateway,
)
from claim_settlement.pipeline.orchestrator import SettlementOrchestrator
from claim_settlement.pipeline.routing import ApprovalRouter, tier_for_amount
from claim_settlement.pipeline.settlement import SettlementClient
from claim_settlement.pipeline.state_machine import can_transition, check_transition
from claim_settlement.pipeline.validation import ValidationEngine

__all__ = [
    "ApprovalRouter",
    "BatchResult",
    "BulkSettlementProcessor",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitMode",
    "CircuitState",
    "FraudScorer",
    "GatewayResponse",
    "HttpPaymentGateway",
    "ItemOutcome",
    "PaymentGateway",
    "SettlementClient",
    "SettlementOrchestrator",
    "SimulatedPaymentGateway",
    "ValidationEngine",
    "can_transition",
    "check_transition",
    "tier_for_amount",
]
