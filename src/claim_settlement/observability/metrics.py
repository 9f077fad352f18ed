"""Settlement attempt and latency metrics.

This module provides:
- SettlementMetrics: thread-safe collector of payment attempts per claim
- Latency percentile calculations
- Export to dict/JSON
- Rebuilding metrics from stored audit records (for a fresh process such as the CLI)
"""

import json
import logging
import threading
from collections import OrderedDict
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from claim_settlement.config.settings import METRICS_MAX_CLAIMS
from claim_settlement.errors import ErrorKind
from claim_settlement.models.claim import AuditRecord

logger = logging.getLogger(__name__)


@dataclass
class AttemptMetric:
    """Metrics for a single payment attempt."""

    timestamp: datetime
    endpoint: str
    attempt: int
    latency_ms: float
    status: str
    status_code: int | None = None
    error: str | None = None


@dataclass
class ClaimSettlementSummary:
    """Summary of settlement attempts for one claim."""

    claim_id: str
    total_attempts: int
    successful_attempts: int
    failed_attempts: int
    total_latency_ms: float
    avg_latency_ms: float
    p50_latency_ms: float
    p95_latency_ms: float
    p99_latency_ms: float
    endpoints: list[str]
    outcome: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _percentile(values: list[float], p: float) -> float:
    """Linear-interpolated p-th percentile (0 for no values)."""
    if not values:
        return 0.0
    ordered = sorted(values)
    rank = (len(ordered) - 1) * p / 100
    low = int(rank)
    if low + 1 >= len(ordered):
        return ordered[-1]
    return ordered[low] + (rank - low) * (ordered[low + 1] - ordered[low])


class SettlementMetrics:
    """Collects payment attempts per claim."""

    def __init__(self, max_claims: Optional[int] = METRICS_MAX_CLAIMS):
        """
        Args:
            max_claims: Claims kept before the least recently added is evicted;
                ``None`` or 0 keeps every claim.
        """
        self._lock = threading.RLock()
        self._claims: OrderedDict[str, dict[str, Any]] = OrderedDict()
        self.max_claims = max_claims

    @classmethod
    def from_audit_records(cls, records: Iterable[AuditRecord]) -> "SettlementMetrics":
        """Replay stored ``integration_attempt`` records and settle-stage failures."""
        metrics = cls(max_claims=None)
        for record in records:
            if not record.claim_id:
                continue
            ctx = record.context
            if record.kind == ErrorKind.INTEGRATION_ATTEMPT.value:
                metrics.record_attempt(
                    record.claim_id,
                    ctx.get("endpoint", "unknown"),
                    int(ctx.get("attempt", 0)),
                    float(ctx.get("latency_ms", 0.0)),
                    status=ctx.get("status", "error"),
                    status_code=ctx.get("status_code"),
                    error=ctx.get("error"),
                    timestamp=record.timestamp,
                )
                if ctx.get("status") == "success":
                    metrics.record_outcome(record.claim_id, "paid")
            elif record.operation == "settle" and record.claim_id in metrics._claims:
                metrics.record_outcome(record.claim_id, record.kind)
        return metrics

    def _entry(self, claim_id: str, outcome: str) -> dict[str, Any]:
        """Entry for ``claim_id``, created (and the oldest evicted) if new. Caller holds the lock."""
        entry = self._claims.get(claim_id)
        if entry is None:
            entry = self._claims[claim_id] = {"attempts": [], "outcome": outcome}
            while self.max_claims and len(self._claims) > self.max_claims:
                self._claims.popitem(last=False)
        return entry

    def record_attempt(
        self,
        claim_id: str,
        endpoint: str,
        attempt: int,
        latency_ms: float,
        status: str = "success",
        status_code: int | None = None,
        error: str | None = None,
        timestamp: datetime | None = None,
    ) -> None:
        metric = AttemptMetric(
            timestamp=timestamp or datetime.now(timezone.utc),
            endpoint=endpoint,
            attempt=attempt,
            latency_ms=latency_ms,
            status=status,
            status_code=status_code,
            error=error,
        )
        with self._lock:
            entry = self._entry(claim_id, "in_progress")
            entry["attempts"].append(metric)
        logger.debug(
            "[settlement_metric] claim_id=%s, endpoint=%s, attempt=%d, latency=%.0fms, status=%s",
            claim_id,
            endpoint,
            attempt,
            latency_ms,
            status,
        )

    def record_outcome(self, claim_id: str, outcome: str) -> None:
        with self._lock:
            self._entry(claim_id, outcome)["outcome"] = outcome

    def get_claim_summary(self, claim_id: str) -> ClaimSettlementSummary | None:
        with self._lock:
            entry = self._claims.get(claim_id)
            if entry is None:
                return None
            attempts: list[AttemptMetric] = list(entry["attempts"])
            outcome = entry["outcome"]

        latencies = [a.latency_ms for a in attempts]
        total_latency = sum(latencies)
        return ClaimSettlementSummary(
            claim_id=claim_id,
            total_attempts=len(attempts),
            successful_attempts=len([a for a in attempts if a.status == "success"]),
            failed_attempts=len([a for a in attempts if a.status != "success"]),
            total_latency_ms=total_latency,
            avg_latency_ms=total_latency / len(attempts) if attempts else 0.0,
            p50_latency_ms=_percentile(latencies, 50),
            p95_latency_ms=_percentile(latencies, 95),
            p99_latency_ms=_percentile(latencies, 99),
            endpoints=sorted({a.endpoint for a in attempts}),
            outcome=outcome,
        )

    def get_all_summaries(self) -> list[ClaimSettlementSummary]:
        with self._lock:
            claim_ids = list(self._claims.keys())
        return [s for s in (self.get_claim_summary(cid) for cid in claim_ids) if s]

    def get_global_stats(self) -> dict[str, Any]:
        summaries = self.get_all_summaries()
        if not summaries:
            return {
                "total_claims": 0,
                "total_attempts": 0,
                "failed_attempts": 0,
                "avg_attempts_per_claim": 0.0,
                "avg_latency_per_claim_ms": 0.0,
            }
        return {
            "total_claims": len(summaries),
            "total_attempts": sum(s.total_attempts for s in summaries),
            "failed_attempts": sum(s.failed_attempts for s in summaries),
            "avg_attempts_per_claim": sum(s.total_attempts for s in summaries) / len(summaries),
            "avg_latency_per_claim_ms": (
                sum(s.total_latency_ms for s in summaries) / len(summaries)
            ),
        }

    def export_json(self, claim_id: str | None = None) -> str:
        if claim_id:
            summary = self.get_claim_summary(claim_id)
            if not summary:
                return json.dumps({"error": f"No metrics found for claim: {claim_id}"})
            return json.dumps(summary.to_dict(), indent=2, default=str)
        return json.dumps(
            {
                "global_stats": self.get_global_stats(),
                "claims": [s.to_dict() for s in self.get_all_summaries()],
            },
            indent=2,
            default=str,
        )


# Global metrics instance
_global_metrics: SettlementMetrics | None = None
_metrics_lock = threading.Lock()


def get_metrics() -> SettlementMetrics:
    """Get the process-wide SettlementMetrics instance."""
    global _global_metrics
    with _metrics_lock:
        if _global_metrics is None:
            _global_metrics = SettlementMetrics()
        return _global_metrics


def reset_metrics() -> None:
    """Discard all collected metrics (used by tests)."""
    global _global_metrics
    with _metrics_lock:
        _global_metrics = None
