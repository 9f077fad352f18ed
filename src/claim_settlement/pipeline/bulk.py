"""Bulk settlement: fan a batch of claims through the orchestrator.

One item failing never stops the batch. Every input claim yields exactly one
``ItemOutcome``, in input order. Routing checkpoints are written as each item
runs; the final ``paid`` writes are staged and flushed with a single
``bulk_update``. Audit entries are buffered and flushed with a single
``log_batch``.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Optional

from claim_settlement.config.settings import BULK_MAX_WORKERS, BULK_TIMEOUT_SECONDS
from claim_settlement.errors import ErrorKind, Failure, PipelineError, Severity
from claim_settlement.models.claim import AuditRecord, Claim, ClaimStatus
from claim_settlement.observability.audit import AuditLogger, BufferedAuditLogger
from claim_settlement.observability.logger import claim_context, get_logger
from claim_settlement.pipeline.orchestrator import SettlementOrchestrator
from claim_settlement.utils.retry import CancellationToken

logger = get_logger(__name__)


@dataclass(frozen=True)
class ItemOutcome:
    """Result for one claim of a batch."""

    claim_id: str
    ok: bool
    claim: Optional[Claim] = None
    failure: Optional[Failure] = None

    @property
    def kind(self) -> Optional[str]:
        return self.failure.kind.value if self.failure else None

    @property
    def reason(self) -> Optional[str]:
        return self.failure.message if self.failure else None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"claim_id": self.claim_id, "ok": self.ok}
        if self.claim is not None:
            data["status"] = self.claim.status.value
            if self.claim.settlement_reference:
                data["settlement_reference"] = self.claim.settlement_reference
        if self.failure is not None:
            data["failure"] = self.failure.to_dict()
        return data


@dataclass
class BatchResult:
    """Accumulated outcomes of a batch."""

    batch_id: str
    succeeded: list[ItemOutcome] = field(default_factory=list)
    failed: list[ItemOutcome] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    def failures_by_kind(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for item in self.failed:
            counts[item.kind or "unknown"] = counts.get(item.kind or "unknown", 0) + 1
        return counts

    def summary(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "total": self.total,
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "duration_ms": round(self.duration_ms, 2),
            "failures_by_kind": self.failures_by_kind(),
        }


class _StagingClaimStore:
    """Claim store that holds back ``paid`` writes until the batch flushes them.

    Every other write (the routing checkpoint, compensation) goes straight to
    the backing store, so a claim is ``approved`` there before it is charged.
    Reads fall through to the backing store, overlaid with staged claims.
    """

    def __init__(self, backing):
        self._backing = backing
        self._staged: dict[str, Claim] = {}
        self._lock = threading.Lock()

    def get(self, claim_id: str) -> Optional[Claim]:
        with self._lock:
            staged = self._staged.get(claim_id)
        return staged if staged is not None else self._backing.get(claim_id)

    def update(self, claim: Claim) -> None:
        if claim.status != ClaimStatus.PAID:
            self._backing.update(claim)
            with self._lock:
                self._staged.pop(claim.id, None)
            return
        with self._lock:
            self._staged[claim.id] = claim

    def list_for_policy(self, policy_id: str) -> list[Claim]:
        claims = self._backing.list_for_policy(policy_id)
        with self._lock:
            staged = {cid: c for cid, c in self._staged.items() if c.policy_id == policy_id}
        merged = [staged.pop(c.id, c) for c in claims]
        return merged + list(staged.values())

    def pending(self) -> list[Claim]:
        with self._lock:
            return list(self._staged.values())


def _item_failure(kind: ErrorKind, claim: Claim, message: str, **kwargs: Any) -> Failure:
    return Failure(kind=kind, message=message, context={"claim_id": claim.id}, **kwargs)


class BulkSettlementProcessor:
    """Processes many claims with a bounded worker pool and a per-item accumulator."""

    def __init__(
        self,
        orchestrator: SettlementOrchestrator,
        audit: Optional[AuditLogger] = None,
        claims=None,
        max_workers: Optional[int] = None,
        use_bulk_update: bool = True,
    ):
        self.orchestrator = orchestrator
        self.audit = audit or orchestrator.audit
        self.claims = claims if claims is not None else orchestrator.claims
        self.max_workers = max_workers or BULK_MAX_WORKERS
        self.use_bulk_update = use_bulk_update

    def process_batch(
        self,
        claims: list[Claim],
        timeout: Optional[float] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> BatchResult:
        """Run every claim through validation, routing and settlement.

        Args:
            claims: Claims to process; each yields exactly one outcome.
            timeout: Seconds before unfinished items are cancelled
                (defaults to ``BULK_TIMEOUT_SECONDS``; 0 means no limit).
            cancel: Optional token to cancel the batch from outside.
        """
        batch_id = f"BATCH-{uuid.uuid4().hex[:8].upper()}"
        start = time.monotonic()
        if timeout is None:
            timeout = BULK_TIMEOUT_SECONDS or None
        token = cancel or CancellationToken(timeout)

        buffered = BufferedAuditLogger(self.audit)
        staging = _StagingClaimStore(self.claims) if self.use_bulk_update else None
        orchestrator = self.orchestrator.bind(claims=staging, audit=buffered)

        result = BatchResult(batch_id=batch_id)
        if not claims:
            result.duration_ms = (time.monotonic() - start) * 1000
            return result

        logger.info("Starting batch %s with %d claim(s)", batch_id, len(claims))
        # One slot per input position; duplicates of an earlier id fail in place.
        outcomes: list[Optional[ItemOutcome]] = [None] * len(claims)
        # Failures classified here rather than inside the orchestrator
        local_failures: list[AuditRecord] = []

        first_index: dict[str, int] = {}
        runnable: list[int] = []
        for index, claim in enumerate(claims):
            if claim.id in first_index:
                failure = _item_failure(
                    ErrorKind.VALIDATION,
                    claim,
                    f"claim {claim.id} appears more than once in batch {batch_id} "
                    f"(first at position {first_index[claim.id]}, again at {index})",
                    reason_code="duplicate_in_batch",
                    action="Submit each claim once per batch",
                )
                local_failures.append(buffered.build_failure(failure, "process_batch", claim.id))
                outcomes[index] = ItemOutcome(claim.id, False, failure=failure)
            else:
                first_index[claim.id] = index
                runnable.append(index)

        workers = max(1, min(len(runnable), self.max_workers))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="settle") as pool:
            futures: dict[Future, int] = {
                pool.submit(self._run_item, orchestrator, claims[index], token, batch_id): index
                for index in runnable
            }
            remaining = token.remaining()
            _, pending = wait(futures, timeout=remaining if remaining is not None else timeout)
            if pending:
                logger.warning(
                    "Batch %s timed out with %d unfinished item(s); cancelling", batch_id, len(pending)
                )
                token.cancel()
                wait(pending)

            for future, index in futures.items():
                claim = claims[index]
                try:
                    outcome = future.result()
                except Exception as e:
                    failure = _item_failure(
                        ErrorKind.PROCESSING,
                        claim,
                        f"unexpected error processing claim {claim.id} in batch {batch_id}: {e}",
                        reason_code="internal_error",
                        cause=e,
                    )
                    local_failures.append(buffered.build_failure(failure, "process_batch", claim.id))
                    outcome = ItemOutcome(claim.id, False, failure=failure)
                outcomes[index] = outcome
                if outcome.failure is not None and outcome.failure.reason_code == "cancelled_before_start":
                    local_failures.append(buffered.build_failure(outcome.failure, "process_batch", claim.id))

        if staging is not None:
            local_failures.extend(self._flush_claims(staging, outcomes, first_index, batch_id, buffered))

        for outcome in outcomes:
            (result.succeeded if outcome.ok else result.failed).append(outcome)
        result.duration_ms = (time.monotonic() - start) * 1000

        summary = result.summary()
        summary_record = buffered.build(
            ErrorKind.BATCH_SUMMARY,
            Severity.LOW,
            "process_batch",
            message=(
                f"batch {batch_id}: {len(result.succeeded)} succeeded, {len(result.failed)} failed "
                f"of {result.total} in {result.duration_ms:.0f}ms"
            ),
            context=summary,
        )
        buffered.flush(local_failures + [summary_record])
        self.audit.notify(
            f"Settlement batch {batch_id} completed",
            summary_record.message,
            Severity.HIGH if result.failed else Severity.LOW,
            summary,
        )
        logger.log_event("batch_completed", **summary)
        return result

    def _run_item(
        self,
        orchestrator: SettlementOrchestrator,
        claim: Claim,
        token: CancellationToken,
        batch_id: str,
    ) -> ItemOutcome:
        if token.cancelled:
            return ItemOutcome(
                claim.id,
                False,
                failure=_item_failure(
                    ErrorKind.CANCELLED,
                    claim,
                    f"claim {claim.id} was not started because batch {batch_id} was cancelled or timed out",
                    reason_code="cancelled_before_start",
                    action="Resubmit the claim in a later batch",
                ),
            )
        with claim_context(claim.id, policy_id=claim.policy_id, batch_id=batch_id):
            result = orchestrator.process(claim, settle=True, cancel=token)
        if result.ok:
            return ItemOutcome(claim.id, True, claim=result.value.claim)
        return ItemOutcome(claim.id, False, failure=result.failure)

    def _flush_claims(
        self,
        staging: _StagingClaimStore,
        outcomes: list[Optional[ItemOutcome]],
        positions: dict[str, int],
        batch_id: str,
        audit: AuditLogger,
    ) -> list[AuditRecord]:
        """Write staged ``paid`` claims with one ``bulk_update`` and fold per-item failures in.

        Every staged claim has already been charged, so a rejected write is
        reported as a payment that was not recorded, never as a retryable item.
        """
        staged = staging.pending()
        if not staged:
            return []
        records: list[AuditRecord] = []
        try:
            results = self.claims.bulk_update(staged)
        except PipelineError as e:
            logger.error("Bulk update for batch %s failed: %s", batch_id, e)
            errors = {c.id: e.failure.message for c in staged}
        else:
            errors = {r.claim_id: r.error or "write rejected" for r in results if not r.ok}

        by_id = {c.id: c for c in staged}
        for claim_id, error in errors.items():
            claim = by_id[claim_id]
            reference = claim.settlement_reference
            failure = Failure(
                kind=ErrorKind.STORE,
                message=(
                    f"claim {claim_id} was paid (transaction {reference}) but recording the "
                    f"payment in the bulk update of batch {batch_id} failed: {error}"
                ),
                reason_code="bulk_update_failed",
                action="Record the transaction reference on the claim manually",
                context={"claim_id": claim_id, "transaction_id": reference},
            )
            records.append(audit.build_failure(failure, "bulk_update", claim_id, severity=Severity.CRITICAL))
            index = positions[claim_id]
            current = outcomes[index]
            if current is None or current.ok:
                outcomes[index] = ItemOutcome(claim_id, False, claim=claim, failure=failure)
        logger.log_event(
            "batch_persisted",
            batch_id=batch_id,
            written=len(staged) - len(errors),
            rejected=len(errors),
            level=logging.WARNING if errors else logging.INFO,
        )
        return records
