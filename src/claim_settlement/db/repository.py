"""Repositories: claims, policies, the audit trail and the notification outbox.

Each repository satisfies the corresponding store protocol used by the
pipeline. SQLite errors surface as ``PipelineError(kind=store)``.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterator, Optional, Protocol

from claim_settlement.db.database import get_connection
from claim_settlement.errors import ErrorKind, PipelineError
from claim_settlement.models.claim import (
    ApprovalTier,
    AuditRecord,
    Claim,
    ClaimStatus,
    LineItem,
    Policy,
    PolicyStatus,
)
from claim_settlement.utils.sanitization import sanitize_message


def generate_claim_id(prefix: str = "CLM") -> str:
    """Generate a unique claim ID."""
    return f"{prefix}-{uuid.uuid4().hex[:8].upper()}"


@dataclass(frozen=True)
class PerItemResult:
    """Outcome of one record in a bulk write."""

    claim_id: str
    ok: bool
    error: Optional[str] = None


class ClaimStore(Protocol):
    def get(self, claim_id: str) -> Optional[Claim]: ...

    def update(self, claim: Claim) -> None: ...

    def bulk_update(self, claims: list[Claim]) -> list[PerItemResult]: ...

    def list_for_policy(self, policy_id: str) -> list[Claim]: ...


class PolicyStore(Protocol):
    def get(self, policy_id: str) -> Optional[Policy]: ...


@contextmanager
def _store_errors(operation: str, claim_id: Optional[str] = None) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as e:
        target = f" for claim {claim_id}" if claim_id else ""
        raise PipelineError.of(
            ErrorKind.STORE,
            f"{operation}{target} failed: {e}",
            reason_code="store_error",
            action="Retry once the claim store is available",
            cause=e,
            context={"operation": operation, "claim_id": claim_id},
        ) from e


def _claim_from_row(row: sqlite3.Row, items: list[sqlite3.Row]) -> Claim:
    return Claim(
        id=row["id"],
        policy_id=row["policy_id"],
        claimant_id=row["claimant_id"],
        claimed_amount=Decimal(row["claimed_amount"]),
        line_items=[
            LineItem(description=i["description"], amount=Decimal(i["amount"]), category=i["category"] or "general")
            for i in items
        ],
        incident_date=date.fromisoformat(row["incident_date"]),
        submission_date=date.fromisoformat(row["submission_date"]),
        status=ClaimStatus(row["status"]),
        approval_tier=ApprovalTier(row["approval_tier"]) if row["approval_tier"] else None,
        fraud_score=row["fraud_score"] or 0.0,
        settlement_reference=row["settlement_reference"],
    )


def _update_params(claim: Claim) -> tuple[Any, ...]:
    return (
        claim.status.value,
        claim.approval_tier.value if claim.approval_tier else None,
        claim.fraud_score,
        claim.settlement_reference,
        claim.id,
    )


_UPDATE_SQL = """
    UPDATE claims
    SET status = ?, approval_tier = ?, fraud_score = ?, settlement_reference = ?,
        updated_at = datetime('now')
    WHERE id = ?
"""


class ClaimRepository:
    """Claim persistence (the Claim Store)."""

    def __init__(self, db_path: str | None = None):
        self._db_path = db_path

    def create(self, claim: Claim) -> str:
        """Insert a claim and its line items. Returns the claim ID."""
        with _store_errors("create claim", claim.id), get_connection(self._db_path) as conn:
            conn.execute(
                """
                INSERT INTO claims (
                    id, policy_id, claimant_id, claimed_amount, incident_date, submission_date,
                    status, approval_tier, fraud_score, settlement_reference
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    claim.id,
                    claim.policy_id,
                    claim.claimant_id,
                    str(claim.claimed_amount),
                    claim.incident_date.isoformat(),
                    claim.submission_date.isoformat(),
                    claim.status.value,
                    claim.approval_tier.value if claim.approval_tier else None,
                    claim.fraud_score,
                    claim.settlement_reference,
                ),
            )
            conn.executemany(
                """
                INSERT INTO claim_line_items (claim_id, position, description, amount, category)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (claim.id, pos, item.description, str(item.amount), item.category)
                    for pos, item in enumerate(claim.line_items)
                ],
            )
        return claim.id

    def get(self, claim_id: str) -> Optional[Claim]:
        """Fetch claim by ID, or None."""
        with _store_errors("read claim", claim_id), get_connection(self._db_path) as conn:
            row = conn.execute("SELECT * FROM claims WHERE id = ?", (claim_id,)).fetchone()
            if row is None:
                return None
            items = conn.execute(
                "SELECT * FROM claim_line_items WHERE claim_id = ? ORDER BY position ASC",
                (claim_id,),
            ).fetchall()
        return _claim_from_row(row, items)

    def update(self, claim: Claim) -> None:
        """Persist status, tier, fraud score and settlement reference of an existing claim."""
        with _store_errors("update claim", claim.id), get_connection(self._db_path) as conn:
            cur = conn.execute(_UPDATE_SQL, _update_params(claim))
            if cur.rowcount == 0:
                raise PipelineError.of(
                    ErrorKind.STORE,
                    f"update claim {claim.id} failed: claim not found",
                    reason_code="claim_not_found",
                    action="Create the claim before processing it",
                    context={"claim_id": claim.id},
                )

    def bulk_update(self, claims: list[Claim]) -> list[PerItemResult]:
        """Update many claims in one transaction with per-item success reporting.

        A record that cannot be written is reported and skipped; the others
        are still committed.
        """
        results: list[PerItemResult] = []
        with _store_errors("bulk update claims"), get_connection(self._db_path) as conn:
            for claim in claims:
                try:
                    cur = conn.execute(_UPDATE_SQL, _update_params(claim))
                except sqlite3.Error as e:
                    results.append(PerItemResult(claim.id, False, f"update failed: {e}"))
                    continue
                if cur.rowcount == 0:
                    results.append(PerItemResult(claim.id, False, "claim not found"))
                else:
                    results.append(PerItemResult(claim.id, True))
        return results

    def list_for_policy(self, policy_id: str) -> list[Claim]:
        """All claims filed against a policy, oldest submission first."""
        with _store_errors("list claims for policy"), get_connection(self._db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM claims WHERE policy_id = ? ORDER BY submission_date ASC, id ASC",
                (policy_id,),
            ).fetchall()
            claims = []
            for row in rows:
                items = conn.execute(
                    "SELECT * FROM claim_line_items WHERE claim_id = ? ORDER BY position ASC",
                    (row["id"],),
                ).fetchall()
                claims.append(_claim_from_row(row, items))
        return claims


class PolicyRepository:
    """Policy lookups (the Policy Store)."""

    def __init__(self, db_path: str | None = None):
        self._db_path = db_path

    def upsert(self, policy: Policy) -> None:
        with _store_errors("upsert policy"), get_connection(self._db_path) as conn:
            conn.execute(
                """
                INSERT INTO policies (id, status, coverage_amount, start_date, end_date)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    coverage_amount = excluded.coverage_amount,
                    start_date = excluded.start_date,
                    end_date = excluded.end_date
                """,
                (
                    policy.id,
                    policy.status.value,
                    str(policy.coverage_amount),
                    policy.start_date.isoformat(),
                    policy.end_date.isoformat(),
                ),
            )

    def get(self, policy_id: str) -> Optional[Policy]:
        with _store_errors("read policy"), get_connection(self._db_path) as conn:
            row = conn.execute("SELECT * FROM policies WHERE id = ?", (policy_id,)).fetchone()
        if row is None:
            return None
        return Policy(
            id=row["id"],
            status=PolicyStatus(row["status"]),
            coverage_amount=Decimal(row["coverage_amount"]),
            start_date=date.fromisoformat(row["start_date"]),
            end_date=date.fromisoformat(row["end_date"]),
        )


def _audit_params(record: AuditRecord) -> tuple[Any, ...]:
    return (
        record.timestamp.isoformat(),
        record.kind,
        record.severity,
        record.operation,
        record.claim_id,
        sanitize_message(record.message),
        json.dumps(record.context, default=str),
    )


class AuditRepository:
    """Append-only audit trail (the Audit Sink)."""

    def __init__(self, db_path: str | None = None):
        self._db_path = db_path

    def append(self, record: AuditRecord) -> None:
        self.append_many([record])

    def append_many(self, records: list[AuditRecord]) -> None:
        with get_connection(self._db_path) as conn:
            conn.executemany(
                """
                INSERT INTO audit_records
                    (timestamp, kind, severity, operation, claim_id, message, context)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [_audit_params(r) for r in records],
            )

    def list_for_claim(self, claim_id: str) -> list[AuditRecord]:
        with get_connection(self._db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM audit_records WHERE claim_id = ? ORDER BY id ASC", (claim_id,)
            ).fetchall()
        return [self._from_row(r) for r in rows]

    def list_all(self, kind: str | None = None) -> list[AuditRecord]:
        with get_connection(self._db_path) as conn:
            if kind:
                rows = conn.execute(
                    "SELECT * FROM audit_records WHERE kind = ? ORDER BY id ASC", (kind,)
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM audit_records ORDER BY id ASC").fetchall()
        return [self._from_row(r) for r in rows]

    @staticmethod
    def _from_row(row: sqlite3.Row) -> AuditRecord:
        return AuditRecord(
            timestamp=datetime.fromisoformat(row["timestamp"]),
            kind=row["kind"],
            severity=row["severity"],
            operation=row["operation"],
            claim_id=row["claim_id"],
            message=row["message"] or "",
            context=json.loads(row["context"]) if row["context"] else {},
        )


class NotificationRepository:
    """Notification outbox (a Notification Sink)."""

    def __init__(self, db_path: str | None = None):
        self._db_path = db_path

    def notify(
        self, subject: str, body: str, severity: str, context: Optional[dict[str, Any]] = None
    ) -> None:
        with get_connection(self._db_path) as conn:
            conn.execute(
                "INSERT INTO notifications (subject, body, severity, context) VALUES (?, ?, ?, ?)",
                (subject, sanitize_message(body), severity, json.dumps(context or {}, default=str)),
            )

    def list_all(self) -> list[dict[str, Any]]:
        with get_connection(self._db_path) as conn:
            rows = conn.execute("SELECT * FROM notifications ORDER BY id ASC").fetchall()
        return [dict(r) for r in rows]
