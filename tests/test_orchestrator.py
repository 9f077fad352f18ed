"""Tests for SettlementOrchestrator."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from claim_settlement.errors import ErrorKind, PipelineError
from claim_settlement.models.claim import ApprovalTier, ClaimStatus, LineItem
from claim_settlement.pipeline.gateway import SimulatedPaymentGateway


class RecordingClaimStore:
    """Delegating claim store that counts I/O and can fail chosen updates."""

    def __init__(self, inner, fail_updates=()):
        self.inner = inner
        self.fail_updates = set(fail_updates)
        self.updates = []
        self.reads = 0

    def get(self, claim_id):
        self.reads += 1
        return self.inner.get(claim_id)

    def list_for_policy(self, policy_id):
        self.reads += 1
        return self.inner.list_for_policy(policy_id)

    def update(self, claim):
        self.updates.append(claim)
        if len(self.updates) in self.fail_updates:
            raise PipelineError.of(ErrorKind.STORE, f"update claim {claim.id} failed: database is locked")
        self.inner.update(claim)

    def bulk_update(self, claims):
        return self.inner.bulk_update(claims)


@pytest.fixture
def stored_claim(claim_repo, make_claim):
    """Factory that creates a claim in the store and returns it."""

    def _make(**kwargs):
        claim = make_claim(**kwargs)
        claim_repo.create(claim)
        return claim

    return _make


class TestProcess:
    """Tests for validation, routing and the checkpoint write."""

    def test_auto_approved_claim_is_checkpointed(self, build_orchestrator, stored_claim, claim_repo):
        claim = stored_claim(amount="1200")
        result = build_orchestrator().process(claim)
        assert result.ok
        outcome = result.value
        assert outcome.claim.status == ClaimStatus.APPROVED
        assert outcome.decision.tier == ApprovalTier.AUTO_APPROVED
        assert outcome.receipt is None
        stored = claim_repo.get(claim.id)
        assert stored.status == ClaimStatus.APPROVED
        assert stored.approval_tier == ApprovalTier.AUTO_APPROVED

    def test_process_and_settle_pays_claim(self, build_orchestrator, stored_claim, claim_repo, audit_sink):
        claim = stored_claim(amount="1200")
        result = build_orchestrator().process(claim, settle=True)
        assert result.ok
        assert result.value.claim.status == ClaimStatus.PAID
        assert result.value.receipt.transaction_id.startswith("TXN-")
        assert result.value.decision.tier == ApprovalTier.AUTO_APPROVED
        stored = claim_repo.get(claim.id)
        assert stored.status == ClaimStatus.PAID
        assert stored.settlement_reference == result.value.receipt.transaction_id
        assert len(audit_sink.of_kind(ErrorKind.INTEGRATION_ATTEMPT)) == 1

    def test_manager_tier_claim_goes_to_review_and_is_not_settled(self, build_orchestrator, stored_claim):
        gateway = SimulatedPaymentGateway()
        claim = stored_claim(amount="7500")
        result = build_orchestrator(gateway=gateway).process(claim, settle=True)
        assert result.value.claim.status == ClaimStatus.UNDER_REVIEW
        assert result.value.decision.tier == ApprovalTier.MANAGER
        assert gateway.calls == []

    def test_validation_failure_leaves_claim_untouched(self, build_orchestrator, stored_claim, claim_repo, audit_sink):
        claim = stored_claim(
            amount="10000",
            line_items=[
                LineItem(description="Engine", amount=Decimal("9000")),
                LineItem(description="Tow", amount=Decimal("500")),
            ],
        )
        result = build_orchestrator().process(claim, settle=True)
        assert result.failure.kind == ErrorKind.VALIDATION
        assert result.failure.message == "claimed amount 10000 does not equal line-item sum 9500"
        assert claim_repo.get(claim.id).status == ClaimStatus.NEW
        records = audit_sink.of_kind(ErrorKind.VALIDATION)
        assert len(records) == 1
        assert records[0].severity == "low"
        assert records[0].message == result.failure.message

    def test_unknown_policy(self, build_orchestrator, stored_claim):
        claim = stored_claim(policy_id="POL-404")
        result = build_orchestrator().process(claim)
        assert result.failure.reason_code == "policy_not_found"

    def test_reprocessing_is_an_invalid_transition(self, build_orchestrator, stored_claim, claim_repo, audit_sink):
        orchestrator = build_orchestrator()
        claim = stored_claim(amount="1200")
        approved = orchestrator.process(claim).value.claim
        result = orchestrator.process(approved)
        assert result.failure.kind == ErrorKind.INVALID_TRANSITION
        assert claim_repo.get(claim.id).status == ClaimStatus.APPROVED
        records = audit_sink.of_kind(ErrorKind.INVALID_TRANSITION)
        assert len(records) == 1
        assert records[0].severity == "high"

    def test_flagged_claim_goes_to_review(self, build_orchestrator, claim_repo, policy_repo, make_policy, make_claim, audit_sink):
        policy_repo.upsert(
            make_policy(
                "POL-NEW",
                coverage_amount=Decimal("1000"),
                start_date=date.today() - timedelta(days=20),
            )
        )
        prior = make_claim(
            claim_id="CLM-PRIOR",
            amount="100",
            policy_id="POL-NEW",
            incident_date=date.today() - timedelta(days=15),
            submission_date=date.today() - timedelta(days=12),
        )
        claim_repo.create(prior)
        claim = make_claim(amount="950", policy_id="POL-NEW")
        claim_repo.create(claim)
        result = build_orchestrator().process(claim, settle=True)
        assert result.ok
        assert result.value.decision.flagged
        assert result.value.claim.status == ClaimStatus.UNDER_REVIEW
        assert result.value.claim.fraud_score == pytest.approx(0.95)
        assert len(audit_sink.of_kind(ErrorKind.FRAUD_REVIEW)) == 1

    def test_supplied_history_skips_history_read(self, build_orchestrator, stored_claim, claim_repo):
        from claim_settlement.models.claim import ClaimantHistory

        store = RecordingClaimStore(claim_repo)
        orchestrator = build_orchestrator().bind(claims=store)
        result = orchestrator.process(stored_claim(), history=ClaimantHistory())
        assert result.ok
        assert store.reads == 0
        assert len(store.updates) == 1

    def test_one_read_and_one_write_per_pass(self, build_orchestrator, stored_claim, claim_repo):
        store = RecordingClaimStore(claim_repo)
        orchestrator = build_orchestrator().bind(claims=store)
        assert orchestrator.process(stored_claim()).ok
        assert store.reads == 1
        assert len(store.updates) == 1


class TestCompensation:
    """Tests for failures after the checkpoint."""

    def test_checkpoint_store_failure_restores_pre_state(self, build_orchestrator, stored_claim, claim_repo, audit_sink):
        store = RecordingClaimStore(claim_repo, fail_updates={1})
        orchestrator = build_orchestrator().bind(claims=store)
        claim = stored_claim()
        result = orchestrator.process(claim)
        assert result.failure.kind == ErrorKind.STORE
        assert [c.status for c in store.updates] == [ClaimStatus.APPROVED, ClaimStatus.NEW]
        assert claim_repo.get(claim.id).status == ClaimStatus.NEW
        records = audit_sink.of_kind(ErrorKind.STORE)
        assert len(records) == 1
        assert records[0].severity == "high"

    def test_unexpected_error_after_checkpoint_reverts(self, build_orchestrator, stored_claim, claim_repo, audit_sink, notifier):
        gateway = SimulatedPaymentGateway([ValueError("malformed gateway payload")])
        claim = stored_claim()
        result = build_orchestrator(gateway=gateway).process(claim, settle=True)
        assert result.failure.kind == ErrorKind.PROCESSING
        assert isinstance(result.failure.cause, ValueError)
        assert "malformed gateway payload" in result.failure.message
        assert claim_repo.get(claim.id).status == ClaimStatus.NEW
        records = audit_sink.of_kind(ErrorKind.PROCESSING)
        assert len(records) == 1
        assert records[0].severity == "critical"
        assert notifier.notifications

    def test_failed_compensation_is_audited(self, build_orchestrator, stored_claim, claim_repo, audit_sink):
        store = RecordingClaimStore(claim_repo, fail_updates={1, 2})
        orchestrator = build_orchestrator().bind(claims=store)
        result = orchestrator.process(stored_claim())
        assert result.failure.kind == ErrorKind.STORE
        compensation = [r for r in audit_sink.records if r.operation == "compensate"]
        assert len(compensation) == 1
        assert compensation[0].severity == "critical"


class TestSettle:
    """Tests for settlement of approved claims."""

    def _approved(self, build_orchestrator, stored_claim, **kwargs):
        claim = stored_claim(**kwargs)
        return build_orchestrator().process(claim).value.claim

    def test_exhausted_retries_leave_claim_approved(self, build_orchestrator, stored_claim, claim_repo, audit_sink, notifier):
        approved = self._approved(build_orchestrator, stored_claim)
        gateway = SimulatedPaymentGateway([500, 500, 500, 500])
        result = build_orchestrator(gateway=gateway).settle(approved)
        assert result.failure.kind == ErrorKind.SETTLEMENT_EXHAUSTED
        assert claim_repo.get(approved.id).status == ClaimStatus.APPROVED
        failures = audit_sink.of_kind(ErrorKind.SETTLEMENT_EXHAUSTED)
        assert len(failures) == 1
        assert failures[0].severity == "critical"
        assert failures[0].context["claim_status"] == "approved"
        assert len(audit_sink.of_kind(ErrorKind.INTEGRATION_ATTEMPT)) == 4
        assert len(notifier.notifications) == 1

    def test_rejected_payment_is_high_severity(self, build_orchestrator, stored_claim, claim_repo, audit_sink):
        approved = self._approved(build_orchestrator, stored_claim)
        result = build_orchestrator(gateway=SimulatedPaymentGateway([402])).settle(approved)
        assert result.failure.kind == ErrorKind.SETTLEMENT_REJECTED
        assert claim_repo.get(approved.id).status == ClaimStatus.APPROVED
        assert audit_sink.of_kind(ErrorKind.SETTLEMENT_REJECTED)[0].severity == "high"

    def test_settling_unapproved_claim_is_rejected(self, build_orchestrator, stored_claim):
        gateway = SimulatedPaymentGateway()
        result = build_orchestrator(gateway=gateway).settle(stored_claim())
        assert result.failure.kind == ErrorKind.INVALID_TRANSITION
        assert gateway.calls == []

    def test_paid_claim_cannot_be_settled_twice(self, build_orchestrator, stored_claim):
        orchestrator = build_orchestrator()
        paid = orchestrator.process(stored_claim(), settle=True).value.claim
        result = orchestrator.settle(paid)
        assert result.failure.kind == ErrorKind.INVALID_TRANSITION

    def test_failed_paid_write_reports_transaction(self, build_orchestrator, stored_claim, claim_repo, audit_sink):
        approved = self._approved(build_orchestrator, stored_claim)
        store = RecordingClaimStore(claim_repo, fail_updates={1})
        result = build_orchestrator().bind(claims=store).settle(approved)
        assert result.failure.kind == ErrorKind.STORE
        assert "transaction_id" in result.failure.context
        assert claim_repo.get(approved.id).status == ClaimStatus.APPROVED


class TestApproveReject:
    """Tests for external approval decisions on claims under review."""

    def _under_review(self, build_orchestrator, stored_claim):
        return build_orchestrator().process(stored_claim(amount="7500")).value.claim

    def test_approve_and_settle(self, build_orchestrator, stored_claim, claim_repo):
        claim = self._under_review(build_orchestrator, stored_claim)
        result = build_orchestrator().approve(claim, approver="manager@example.com")
        assert result.ok
        assert result.value.claim.status == ClaimStatus.PAID
        assert claim_repo.get(claim.id).status == ClaimStatus.PAID

    def test_approve_without_settlement(self, build_orchestrator, stored_claim, claim_repo):
        claim = self._under_review(build_orchestrator, stored_claim)
        result = build_orchestrator().approve(claim, approver="manager", settle=False)
        assert result.value.claim.status == ClaimStatus.APPROVED
        assert claim_repo.get(claim.id).status == ClaimStatus.APPROVED

    def test_reject(self, build_orchestrator, stored_claim, claim_repo):
        claim = self._under_review(build_orchestrator, stored_claim)
        result = build_orchestrator().reject(claim, reason="pre-existing damage")
        assert result.value.claim.status == ClaimStatus.REJECTED
        assert claim_repo.get(claim.id).status == ClaimStatus.REJECTED

    def test_cannot_approve_new_claim(self, build_orchestrator, stored_claim):
        result = build_orchestrator().approve(stored_claim(), approver="manager")
        assert result.failure.kind == ErrorKind.INVALID_TRANSITION

    def test_cannot_reject_paid_claim(self, build_orchestrator, stored_claim):
        orchestrator = build_orchestrator()
        paid = orchestrator.process(stored_claim(), settle=True).value.claim
        assert orchestrator.reject(paid, reason="late").failure.kind == ErrorKind.INVALID_TRANSITION
