"""Pydantic models for claims."""

from claim_settlement.models.claim import (
    ApprovalTier,
    AuditRecord,
    Claim,
    ClaimantHistory,
    ClaimStatus,
    FraudScore,
    LineItem,
    Policy,
    PolicyStatus,
    ProcessingOutcome,
    RoutingDecision,
    SettlementReceipt,
    ValidatedClaim,
)

__all__ = [
    "ApprovalTier",
    "AuditRecord",
    "Claim",
    "ClaimantHistory",
    "ClaimStatus",
    "FraudScore",
    "LineItem",
    "Policy",
    "PolicyStatus",
    "ProcessingOutcome",
    "RoutingDecision",
    "SettlementReceipt",
    "ValidatedClaim",
]
