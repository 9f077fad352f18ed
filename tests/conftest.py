"""Shared pytest fixtures for all test files."""

import logging
import os
import tempfile
import threading
from datetime import date, timedelta
from decimal import Decimal

import pytest

from claim_settlement.db.database import init_db
from claim_settlement.models.claim import Claim, LineItem, Policy, PolicyStatus


@pytest.fixture(autouse=True)
def temp_db():
    """Use a temporary SQLite DB for tests."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    init_db(path)
    prev = os.environ.get("CLAIMS_DB_PATH")
    os.environ["CLAIMS_DB_PATH"] = path
    try:
        yield path
    finally:
        if prev is None:
            os.environ.pop("CLAIMS_DB_PATH", None)
        else:
            os.environ["CLAIMS_DB_PATH"] = prev
        try:
            os.unlink(path)
        except OSError:
            # Ignore errors when cleaning up the temporary DB file (e.g., if already removed).
            pass


@pytest.fixture(autouse=True)
def reset_global_metrics():
    """Reset the global SettlementMetrics singleton before and after each test."""
    from claim_settlement.observability.metrics import reset_metrics

    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture(autouse=True)
def propagate_package_logs():
    """Let caplog see package logs even after a CLI run installed its own handler."""
    package_logger = logging.getLogger("claim_settlement")
    previous = package_logger.propagate
    package_logger.propagate = True
    yield
    package_logger.propagate = previous


class MemoryAuditSink:
    """Audit sink that keeps records in memory and counts sink calls."""

    def __init__(self):
        self.records = []
        self.append_calls = 0
        self.append_many_calls = 0
        self._lock = threading.Lock()

    def append(self, record):
        with self._lock:
            self.append_calls += 1
            self.records.append(record)

    def append_many(self, records):
        with self._lock:
            self.append_many_calls += 1
            self.records.extend(records)

    def of_kind(self, kind):
        value = getattr(kind, "value", kind)
        return [r for r in self.records if r.kind == value]


class RecordingNotifier:
    """Notification sink that records every notification."""

    def __init__(self):
        self.notifications = []

    def notify(self, subject, body, severity, context=None):
        self.notifications.append(
            {"subject": subject, "body": body, "severity": severity, "context": context or {}}
        )


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def audit(audit_sink, notifier):
    from claim_settlement.observability.audit import AuditLogger

    return AuditLogger(audit_sink, notifier)


@pytest.fixture
def make_policy():
    """Factory for an active policy covering the last year and the next one."""

    def _make(policy_id="POL-001", **overrides):
        data = {
            "id": policy_id,
            "status": PolicyStatus.ACTIVE,
            "coverage_amount": Decimal("100000"),
            "start_date": date.today() - timedelta(days=400),
            "end_date": date.today() + timedelta(days=365),
        }
        data.update(overrides)
        return Policy(**data)

    return _make


@pytest.fixture
def make_claim():
    """Factory for a new claim whose line items sum to its amount."""

    def _make(claim_id="CLM-001", amount="1200", policy_id="POL-001", line_items=None, **overrides):
        amount = Decimal(str(amount))
        if line_items is None:
            line_items = [LineItem(description="Repair", amount=amount)]
        data = {
            "id": claim_id,
            "policy_id": policy_id,
            "claimed_amount": amount,
            "line_items": line_items,
            "incident_date": date.today() - timedelta(days=10),
            "submission_date": date.today() - timedelta(days=5),
        }
        data.update(overrides)
        return Claim(**data)

    return _make


@pytest.fixture
def claim_repo(temp_db):
    from claim_settlement.db.repository import ClaimRepository

    return ClaimRepository(temp_db)


@pytest.fixture
def policy_repo(temp_db, make_policy):
    """Policy repository seeded with POL-001."""
    from claim_settlement.db.repository import PolicyRepository

    repo = PolicyRepository(temp_db)
    repo.upsert(make_policy())
    return repo


@pytest.fixture
def breakers():
    from claim_settlement.pipeline.circuit_breaker import CircuitBreakerRegistry

    return CircuitBreakerRegistry(failure_threshold=5, success_threshold=2, timeout_window=60.0)


@pytest.fixture
def build_orchestrator(claim_repo, policy_repo, audit, breakers):
    """Factory wiring an orchestrator to the temp DB, the in-memory audit sink and a gateway."""
    from claim_settlement.pipeline.gateway import SimulatedPaymentGateway
    from claim_settlement.pipeline.orchestrator import SettlementOrchestrator
    from claim_settlement.pipeline.settlement import SettlementClient

    def _build(gateway=None, max_retries=3, backoff_base=0.0, **kwargs):
        client = SettlementClient(
            gateway or SimulatedPaymentGateway(),
            breakers,
            audit,
            max_retries=max_retries,
            backoff_base=backoff_base,
            timeout=5.0,
        )
        return SettlementOrchestrator(claim_repo, policy_repo, audit, client, **kwargs)

    return _build
