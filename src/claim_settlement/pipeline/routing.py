"""Approval tier assignment and next-status routing."""

from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from claim_settlement.config.settings import (
    MANAGER_APPROVAL_THRESHOLD,
    SENIOR_MANAGER_APPROVAL_THRESHOLD,
)
from claim_settlement.errors import ErrorKind, PipelineError, Severity
from claim_settlement.models.claim import (
    ApprovalTier,
    ClaimStatus,
    FraudScore,
    RoutingDecision,
    ValidatedClaim,
)

if TYPE_CHECKING:
    from claim_settlement.observability.audit import AuditLogger


def tier_for_amount(
    amount: Decimal,
    manager_threshold: Decimal = MANAGER_APPROVAL_THRESHOLD,
    senior_threshold: Decimal = SENIOR_MANAGER_APPROVAL_THRESHOLD,
) -> ApprovalTier:
    """``< 5000`` auto-approved, ``[5000, 25000)`` manager, ``>= 25000`` senior manager."""
    if amount >= senior_threshold:
        return ApprovalTier.SENIOR_MANAGER
    if amount >= manager_threshold:
        return ApprovalTier.MANAGER
    return ApprovalTier.AUTO_APPROVED


class ApprovalRouter:
    """Deterministic routing: tier from amount, next status from tier and fraud flag."""

    def __init__(self, audit: Optional["AuditLogger"] = None):
        self.audit = audit

    def with_audit(self, audit: Optional["AuditLogger"]) -> "ApprovalRouter":
        return ApprovalRouter(audit=audit)

    def route(self, validated: ValidatedClaim, fraud_score: FraudScore) -> RoutingDecision:
        if not isinstance(validated, ValidatedClaim):
            raise PipelineError.of(
                ErrorKind.ROUTING,
                f"routing requires a validated claim, got {type(validated).__name__}",
                reason_code="not_validated",
            )
        claim = validated.claim
        if claim.claimed_amount <= 0:
            raise PipelineError.of(
                ErrorKind.ROUTING,
                f"cannot route claim {claim.id} with amount {claim.claimed_amount}",
                reason_code="non_positive_amount",
            )

        tier = tier_for_amount(claim.claimed_amount)
        next_status = (
            ClaimStatus.APPROVED if tier == ApprovalTier.AUTO_APPROVED else ClaimStatus.UNDER_REVIEW
        )
        if fraud_score.flagged:
            next_status = ClaimStatus.UNDER_REVIEW
            if self.audit is not None:
                self.audit.log(
                    ErrorKind.FRAUD_REVIEW,
                    Severity.MEDIUM,
                    "route",
                    claim_id=claim.id,
                    message=(
                        f"duplicate/fraud review required: fraud score {fraud_score.score:.2f} "
                        f"routed claim {claim.id} ({tier.value}) to under_review"
                    ),
                    context={"fraud_score": fraud_score.score, "reasons": fraud_score.reasons},
                )

        return RoutingDecision(
            tier=tier,
            next_status=next_status,
            flagged=fraud_score.flagged,
            fraud_score=fraud_score.score,
        )
