"""Pydantic models for claims, policies, routing decisions and settlement receipts."""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ClaimStatus(str, Enum):
    """Lifecycle status of a claim."""

    NEW = "new"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class ApprovalTier(str, Enum):
    """Reviewer level required for a claim, derived from its amount."""

    AUTO_APPROVED = "auto_approved"
    MANAGER = "manager"
    SENIOR_MANAGER = "senior_manager"


class PolicyStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"


class LineItem(BaseModel):
    """Itemized component of a claim's amount."""

    description: str = Field(..., description="What the line item covers")
    amount: Decimal = Field(..., description="Line item amount")
    category: str = Field(default="general", description="Line item category")


class Claim(BaseModel):
    """A request for payout under a policy."""

    id: str = Field(..., description="Claim ID")
    policy_id: str = Field(..., description="Policy the claim is made against")
    claimed_amount: Decimal = Field(..., description="Total claimed amount")
    line_items: list[LineItem] = Field(default_factory=list)
    incident_date: date = Field(..., description="Date of incident")
    submission_date: date = Field(default_factory=date.today)
    status: ClaimStatus = Field(default=ClaimStatus.NEW)
    approval_tier: Optional[ApprovalTier] = None
    fraud_score: float = Field(default=0.0, ge=0.0, le=1.0)
    settlement_reference: Optional[str] = Field(
        default=None, description="Payment transaction reference once paid"
    )
    claimant_id: Optional[str] = None

    def line_item_total(self) -> Decimal:
        return sum((item.amount for item in self.line_items), Decimal("0"))


class Policy(BaseModel):
    """Insurance policy; read-only to the pipeline."""

    model_config = ConfigDict(frozen=True)

    id: str
    status: PolicyStatus = PolicyStatus.ACTIVE
    coverage_amount: Decimal = Decimal("0")
    start_date: date
    end_date: date


class ClaimantHistory(BaseModel):
    """Prior claims and policy facts used by fraud scoring."""

    prior_claims: list[Claim] = Field(default_factory=list)
    policy_start: Optional[date] = None
    coverage_amount: Optional[Decimal] = None

    @classmethod
    def for_claim(
        cls, claim: Claim, others: list[Claim], policy: Optional[Policy] = None
    ) -> "ClaimantHistory":
        """Build history from sibling claims on the same policy, excluding ``claim``."""
        return cls(
            prior_claims=[c for c in others if c.id != claim.id],
            policy_start=policy.start_date if policy else None,
            coverage_amount=policy.coverage_amount if policy else None,
        )


class FraudScore(BaseModel):
    """Advisory risk estimate in [0, 1]."""

    score: float = Field(default=0.0, ge=0.0, le=1.0)
    flagged: bool = False
    reasons: list[str] = Field(default_factory=list)


class ValidatedClaim(BaseModel):
    """A claim that passed every validation check."""

    model_config = ConfigDict(frozen=True)

    claim: Claim
    policy: Policy


class RoutingDecision(BaseModel):
    """Tier and next status assigned to a validated claim."""

    tier: ApprovalTier
    next_status: ClaimStatus
    flagged: bool = False
    fraud_score: float = 0.0


class SettlementReceipt(BaseModel):
    """Proof of a successful payment."""

    claim_id: str
    transaction_id: str
    amount: Decimal
    attempts: int = 1
    latency_ms: float = 0.0


class ProcessingOutcome(BaseModel):
    """Result of driving one claim through the orchestrator."""

    claim: Claim
    decision: Optional[RoutingDecision] = None
    receipt: Optional[SettlementReceipt] = None


class AuditRecord(BaseModel):
    """Immutable audit trail entry."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    kind: str
    severity: str
    operation: str
    claim_id: Optional[str] = None
    message: str = ""
    context: dict[str, Any] = Field(default_factory=dict)
