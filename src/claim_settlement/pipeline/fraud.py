"""Additive fraud risk scoring from a claim and its claimant history."""

import logging
from decimal import Decimal
from typing import Any, Optional

from claim_settlement.config.settings import get_fraud_config
from claim_settlement.models.claim import Claim, ClaimantHistory, FraudScore

logger = logging.getLogger(__name__)


class FraudScorer:
    """Computes an advisory fraud score in [0, 1].

    The score only informs routing and the audit trail; it never rejects a
    claim. ``score`` does not raise: a rule that cannot be evaluated (for
    example, no history) contributes nothing.
    """

    def __init__(self, config: Optional[dict[str, Any]] = None):
        self.config = {**get_fraud_config(), **(config or {})}

    def score(self, claim: Claim, history: Optional[ClaimantHistory] = None) -> FraudScore:
        history = history or ClaimantHistory()
        cfg = self.config
        total = 0.0
        reasons: list[str] = []

        if self._has_recent_claim(claim, history):
            total += cfg["recent_claim_score"]
            reasons.append("recent_claim_on_policy")

        if self._exceeds_average(claim, history):
            total += cfg["amount_multiple_score"]
            reasons.append("amount_exceeds_history_average")

        if self._near_policy_start(claim, history):
            total += cfg["new_policy_score"]
            reasons.append("incident_near_policy_start")

        if self._near_coverage_limit(claim, history):
            total += cfg["coverage_ratio_score"]
            reasons.append("amount_near_coverage_limit")

        total = round(min(max(total, 0.0), 1.0), 4)
        flagged = total > cfg["flag_threshold"]
        if flagged:
            logger.info(
                "Claim %s flagged for fraud review: score=%.2f reasons=%s",
                claim.id,
                total,
                reasons,
            )
        return FraudScore(score=total, flagged=flagged, reasons=reasons)

    def _has_recent_claim(self, claim: Claim, history: ClaimantHistory) -> bool:
        window = self.config["recent_claim_days"]
        for prior in history.prior_claims:
            if prior.id == claim.id or prior.policy_id != claim.policy_id:
                continue
            days = (claim.submission_date - prior.submission_date).days
            if 0 <= days <= window:
                return True
        return False

    def _exceeds_average(self, claim: Claim, history: ClaimantHistory) -> bool:
        amounts = [p.claimed_amount for p in history.prior_claims if p.id != claim.id]
        if not amounts:
            return False
        average = sum(amounts, Decimal("0")) / len(amounts)
        if average <= 0:
            return False
        multiple = Decimal(str(self.config["amount_multiple"]))
        return claim.claimed_amount > average * multiple

    def _near_policy_start(self, claim: Claim, history: ClaimantHistory) -> bool:
        if history.policy_start is None:
            return False
        days = (claim.incident_date - history.policy_start).days
        return 0 <= days <= self.config["new_policy_days"]

    def _near_coverage_limit(self, claim: Claim, history: ClaimantHistory) -> bool:
        coverage = history.coverage_amount
        if coverage is None or coverage <= 0:
            return False
        ratio = Decimal(str(self.config["coverage_ratio"]))
        return claim.claimed_amount >= coverage * ratio
