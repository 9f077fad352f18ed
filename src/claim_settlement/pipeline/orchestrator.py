"""Drives one claim through validation, routing and (optionally) settlement.

The routing write is the checkpoint. Before it, failures leave the stored
claim untouched. After it, a settlement failure leaves the claim ``approved``,
and an unexpected error restores the captured pre-checkpoint state with a
compensating write so the claim is never left half-applied.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from claim_settlement.errors import ErrorKind, Failure, PipelineError, Result, Severity
from claim_settlement.models.claim import (
    Claim,
    ClaimantHistory,
    ClaimStatus,
    Policy,
    ProcessingOutcome,
)
from claim_settlement.observability.audit import AuditLogger
from claim_settlement.observability.logger import claim_context, get_logger
from claim_settlement.pipeline.fraud import FraudScorer
from claim_settlement.pipeline.routing import ApprovalRouter
from claim_settlement.pipeline.settlement import SettlementClient
from claim_settlement.pipeline.state_machine import check_transition
from claim_settlement.pipeline.validation import ValidationEngine
from claim_settlement.utils.retry import CancellationToken

logger = get_logger(__name__)

_SETTLEMENT_SEVERITY = {
    ErrorKind.SETTLEMENT_REJECTED: Severity.HIGH,
    ErrorKind.CIRCUIT_OPEN: Severity.MEDIUM,
    ErrorKind.CANCELLED: Severity.MEDIUM,
    ErrorKind.VALIDATION: Severity.LOW,
}


@dataclass
class _Checkpoint:
    """Pre-state captured before the routing write."""

    pre_state: Optional[Claim] = None
    current: Optional[Claim] = None
    committed: bool = False


class SettlementOrchestrator:
    """Runs the per-claim state machine against the claim and policy stores."""

    def __init__(
        self,
        claims,
        policies,
        audit: AuditLogger,
        settlement_client: SettlementClient,
        validator: Optional[ValidationEngine] = None,
        scorer: Optional[FraudScorer] = None,
        router: Optional[ApprovalRouter] = None,
    ):
        self.claims = claims
        self.policies = policies
        self.audit = audit
        self.settlement_client = settlement_client
        self.validator = validator or ValidationEngine()
        self.scorer = scorer or FraudScorer()
        self.router = router or ApprovalRouter(audit=audit)

    def bind(self, claims=None, audit: Optional[AuditLogger] = None) -> "SettlementOrchestrator":
        """Copy of this orchestrator writing to another claim store and/or audit logger."""
        audit = audit or self.audit
        return SettlementOrchestrator(
            claims if claims is not None else self.claims,
            self.policies,
            audit,
            self.settlement_client.with_audit(audit),
            validator=self.validator,
            scorer=self.scorer,
            router=self.router.with_audit(audit),
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def process(
        self,
        claim: Claim,
        history: Optional[ClaimantHistory] = None,
        document_count: Optional[int] = None,
        settle: bool = False,
        cancel: Optional[CancellationToken] = None,
    ) -> Result[ProcessingOutcome]:
        """Validate, score, route and checkpoint a claim; settle it if asked and approved."""
        checkpoint = _Checkpoint()
        start = time.monotonic()
        with claim_context(claim.id, policy_id=claim.policy_id):
            try:
                result = self._process(claim, history, document_count, settle, cancel, checkpoint)
            except PipelineError as e:
                self._compensate(checkpoint, e.failure.message)
                self.audit.log_failure(e.failure, "process", claim_id=claim.id)
                result = Result.fail(e.failure)
            except Exception as e:
                result = self._unexpected(claim, "process", e, checkpoint)
            logger.log_event(
                "claim_processed",
                ok=result.ok,
                kind=None if result.ok else result.failure.kind.value,
                duration_ms=round((time.monotonic() - start) * 1000, 2),
                level=logging.INFO if result.ok else logging.WARNING,
            )
            return result

    def settle(self, claim: Claim, cancel: Optional[CancellationToken] = None) -> Result[ProcessingOutcome]:
        """Pay an ``approved`` claim and move it to ``paid``."""
        with claim_context(claim.id, policy_id=claim.policy_id):
            try:
                return self._settle(claim, cancel)
            except PipelineError as e:
                self.audit.log_failure(e.failure, "settle", claim_id=claim.id)
                return Result.fail(e.failure)
            except Exception as e:
                return self._unexpected(claim, "settle", e, None)

    def approve(
        self,
        claim: Claim,
        approver: str,
        settle: bool = True,
        cancel: Optional[CancellationToken] = None,
    ) -> Result[ProcessingOutcome]:
        """External approval: ``under_review -> approved``, then settle if requested."""
        with claim_context(claim.id, policy_id=claim.policy_id):
            try:
                approved = self._persist(claim, claim.model_copy(update={"status": ClaimStatus.APPROVED}))
            except PipelineError as e:
                self.audit.log_failure(e.failure, "approve", claim_id=claim.id)
                return Result.fail(e.failure)
            except Exception as e:
                return self._unexpected(claim, "approve", e, None)
            logger.log_event("claim_approved", approver=approver)
            if not settle:
                return Result.success(ProcessingOutcome(claim=approved))
        return self.settle(approved, cancel=cancel)

    def reject(self, claim: Claim, reason: str) -> Result[ProcessingOutcome]:
        """``under_review -> rejected``."""
        with claim_context(claim.id, policy_id=claim.policy_id):
            try:
                rejected = self._persist(claim, claim.model_copy(update={"status": ClaimStatus.REJECTED}))
            except PipelineError as e:
                self.audit.log_failure(e.failure, "reject", claim_id=claim.id)
                return Result.fail(e.failure)
            except Exception as e:
                return self._unexpected(claim, "reject", e, None)
            logger.log_event("claim_rejected", reason=reason)
            return Result.success(ProcessingOutcome(claim=rejected))

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _process(
        self,
        claim: Claim,
        history: Optional[ClaimantHistory],
        document_count: Optional[int],
        settle: bool,
        cancel: Optional[CancellationToken],
        checkpoint: _Checkpoint,
    ) -> Result[ProcessingOutcome]:
        policy = self.policies.get(claim.policy_id)

        validated = self.validator.validate(claim, policy, document_count)
        if not validated.ok:
            self.audit.log_failure(validated.failure, "validate", claim_id=claim.id)
            logger.log_event("claim_invalid", reason=validated.failure.reason_code, level=logging.WARNING)
            return Result.fail(validated.failure)
        logger.log_event("claim_validated")

        if history is None:
            history = self._history(claim, policy)
        fraud = self.scorer.score(claim, history)
        try:
            decision = self.router.route(validated.value, fraud)
        except PipelineError as e:
            self.audit.log_failure(e.failure, "route", claim_id=claim.id)
            return Result.fail(e.failure)
        logger.log_event(
            "claim_routed",
            tier=decision.tier.value,
            next_status=decision.next_status.value,
            fraud_score=decision.fraud_score,
            flagged=decision.flagged,
        )

        routed = claim.model_copy(
            update={
                "status": decision.next_status,
                "approval_tier": decision.tier,
                "fraud_score": decision.fraud_score,
            }
        )
        checkpoint.pre_state = claim
        try:
            routed = self._persist(claim, routed)
        except PipelineError as e:
            if e.kind != ErrorKind.STORE:
                raise
            self.audit.log_failure(e.failure, "checkpoint", claim_id=claim.id)
            if e.failure.reason_code != "claim_not_found":
                checkpoint.committed = True  # the write may have partially landed
                self._compensate(checkpoint, e.failure.message)
            return Result.fail(e.failure)
        checkpoint.committed = True
        checkpoint.current = routed

        if settle and routed.status == ClaimStatus.APPROVED:
            settled = self._settle(routed, cancel)
            if settled.ok:
                checkpoint.current = settled.value.claim
                return Result.success(settled.value.model_copy(update={"decision": decision}))
            return settled

        return Result.success(ProcessingOutcome(claim=routed, decision=decision))

    def _settle(self, claim: Claim, cancel: Optional[CancellationToken]) -> Result[ProcessingOutcome]:
        check_transition(claim.id, claim.status, ClaimStatus.PAID)

        result = self.settlement_client.settle(claim, cancel=cancel)
        if not result.ok:
            failure = result.failure
            failure = Failure(
                kind=failure.kind,
                message=failure.message,
                reason_code=failure.reason_code,
                action=failure.action,
                cause=failure.cause,
                context={**failure.context, "claim_status": claim.status.value},
            )
            severity = _SETTLEMENT_SEVERITY.get(failure.kind, Severity.CRITICAL)
            self.audit.log_failure(failure, "settle", claim_id=claim.id, severity=severity)
            logger.log_event("settlement_failed", kind=failure.kind.value, level=logging.WARNING)
            return Result.fail(failure)

        receipt = result.value
        paid = claim.model_copy(
            update={"status": ClaimStatus.PAID, "settlement_reference": receipt.transaction_id}
        )
        try:
            paid = self._persist(claim, paid)
        except PipelineError as e:
            failure = Failure(
                kind=e.kind,
                message=(
                    f"claim {claim.id} was paid (transaction {receipt.transaction_id}) but "
                    f"recording the payment failed: {e.failure.message}"
                ),
                reason_code=e.failure.reason_code,
                action="Record the transaction reference on the claim manually",
                cause=e.failure.cause,
                context={**e.failure.context, "transaction_id": receipt.transaction_id},
            )
            self.audit.log_failure(failure, "settle", claim_id=claim.id)
            return Result.fail(failure)
        logger.log_event("claim_paid", transaction_id=receipt.transaction_id, attempts=receipt.attempts)
        return Result.success(ProcessingOutcome(claim=paid, receipt=receipt))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _persist(self, before: Claim, after: Claim) -> Claim:
        """Transition-checked single write."""
        check_transition(before.id, before.status, after.status)
        self.claims.update(after)
        return after

    def _history(self, claim: Claim, policy: Optional[Policy]) -> ClaimantHistory:
        return ClaimantHistory.for_claim(claim, self.claims.list_for_policy(claim.policy_id), policy)

    def _compensate(self, checkpoint: _Checkpoint, reason: str) -> None:
        """Write the pre-checkpoint state back, unless nothing was written or the claim is paid."""
        if not checkpoint.committed or checkpoint.pre_state is None:
            return
        if checkpoint.current is not None and checkpoint.current.status == ClaimStatus.PAID:
            return
        pre = checkpoint.pre_state
        try:
            self.claims.update(pre)
        except Exception as e:
            self.audit.log(
                ErrorKind.PROCESSING,
                Severity.CRITICAL,
                "compensate",
                claim_id=pre.id,
                message=(
                    f"could not restore claim {pre.id} to {pre.status.value} after failure "
                    f"({reason}): {e}"
                ),
                exc=e,
            )
            return
        checkpoint.committed = False
        logger.log_event("claim_compensated", restored_status=pre.status.value, level=logging.WARNING)

    def _unexpected(
        self,
        claim: Claim,
        operation: str,
        error: Exception,
        checkpoint: Optional[_Checkpoint],
    ) -> Result[ProcessingOutcome]:
        if checkpoint is not None:
            self._compensate(checkpoint, repr(error))
        failure = Failure(
            kind=ErrorKind.PROCESSING,
            message=f"unexpected error during {operation} of claim {claim.id}: {type(error).__name__}: {error}",
            reason_code="internal_error",
            action="The claim was left in its last consistent status; contact support with the claim id",
            cause=error,
            context={"operation": operation, "claim_status": claim.status.value},
        )
        self.audit.log_failure(failure, operation, claim_id=claim.id)
        logger.exception("Unexpected error during %s of claim %s", operation, claim.id)
        return Result.fail(failure)
