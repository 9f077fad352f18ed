"""Tests for ApprovalRouter and tier assignment."""

from decimal import Decimal

import pytest

from claim_settlement.errors import ErrorKind, PipelineError
from claim_settlement.models.claim import ApprovalTier, ClaimStatus, FraudScore, ValidatedClaim
from claim_settlement.pipeline.routing import ApprovalRouter, tier_for_amount


@pytest.mark.parametrize(
    "amount,tier",
    [
        ("0.01", ApprovalTier.AUTO_APPROVED),
        ("4999.99", ApprovalTier.AUTO_APPROVED),
        ("5000", ApprovalTier.MANAGER),
        ("24999.99", ApprovalTier.MANAGER),
        ("25000", ApprovalTier.SENIOR_MANAGER),
        ("1000000", ApprovalTier.SENIOR_MANAGER),
    ],
)
def test_tier_boundaries(amount, tier):
    assert tier_for_amount(Decimal(amount)) == tier


class TestApprovalRouter:
    """Tests for next-status routing."""

    def _validated(self, make_claim, make_policy, amount):
        return ValidatedClaim(claim=make_claim(amount=amount), policy=make_policy())

    def test_auto_approved_goes_to_approved(self, make_claim, make_policy):
        decision = ApprovalRouter().route(self._validated(make_claim, make_policy, "4999.99"), FraudScore())
        assert decision.tier == ApprovalTier.AUTO_APPROVED
        assert decision.next_status == ClaimStatus.APPROVED
        assert not decision.flagged

    def test_manager_tier_goes_to_review(self, make_claim, make_policy):
        decision = ApprovalRouter().route(self._validated(make_claim, make_policy, "5000"), FraudScore())
        assert decision.tier == ApprovalTier.MANAGER
        assert decision.next_status == ClaimStatus.UNDER_REVIEW

    def test_senior_manager_tier_goes_to_review(self, make_claim, make_policy):
        decision = ApprovalRouter().route(self._validated(make_claim, make_policy, "25000"), FraudScore())
        assert decision.tier == ApprovalTier.SENIOR_MANAGER
        assert decision.next_status == ClaimStatus.UNDER_REVIEW

    def test_flagged_claim_forced_to_review_and_audited(self, make_claim, make_policy, audit, audit_sink):
        router = ApprovalRouter(audit=audit)
        score = FraudScore(score=0.95, flagged=True, reasons=["amount_near_coverage_limit"])
        decision = router.route(self._validated(make_claim, make_policy, "100"), score)
        assert decision.tier == ApprovalTier.AUTO_APPROVED
        assert decision.next_status == ClaimStatus.UNDER_REVIEW
        assert decision.flagged
        assert decision.fraud_score == 0.95
        records = audit_sink.of_kind(ErrorKind.FRAUD_REVIEW)
        assert len(records) == 1
        assert records[0].severity == "medium"
        assert "duplicate/fraud review required" in records[0].message

    def test_unflagged_score_does_not_change_routing(self, make_claim, make_policy, audit_sink, audit):
        router = ApprovalRouter(audit=audit)
        decision = router.route(
            self._validated(make_claim, make_policy, "100"), FraudScore(score=0.75, flagged=False)
        )
        assert decision.next_status == ClaimStatus.APPROVED
        assert audit_sink.records == []

    def test_routing_is_deterministic(self, make_claim, make_policy):
        validated = self._validated(make_claim, make_policy, "7000")
        router = ApprovalRouter()
        assert router.route(validated, FraudScore()) == router.route(validated, FraudScore())

    def test_unvalidated_input_raises_routing_error(self, make_claim):
        with pytest.raises(PipelineError) as exc_info:
            ApprovalRouter().route(make_claim(), FraudScore())
        assert exc_info.value.kind == ErrorKind.ROUTING

    def test_with_audit_returns_rebound_router(self, audit):
        router = ApprovalRouter()
        rebound = router.with_audit(audit)
        assert rebound.audit is audit
        assert router.audit is None
