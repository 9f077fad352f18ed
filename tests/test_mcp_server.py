"""Unit tests for MCP server tools."""

import json
from datetime import date, timedelta

import pytest

from claim_settlement.mcp_server.server import (
    approve_claim,
    get_claim_audit,
    get_claim_status,
    get_settlement_metrics,
    process_claim,
    settle_claim,
)


@pytest.fixture(autouse=True)
def seeded(policy_repo, monkeypatch):
    monkeypatch.delenv("PAYMENT_GATEWAY_URL", raising=False)
    return policy_repo


def claim_json(claim_id="CLM-MCP1", amount="1200", **overrides):
    data = {
        "id": claim_id,
        "policy_id": "POL-001",
        "claimed_amount": amount,
        "line_items": [{"description": "Repair", "amount": amount}],
        "incident_date": (date.today() - timedelta(days=10)).isoformat(),
    }
    data.update(overrides)
    return json.dumps(data)


class TestProcessClaim:
    """Test the process_claim tool."""

    def test_auto_approved(self):
        data = json.loads(process_claim(claim_json()))
        assert data["ok"] is True
        assert data["claim"]["status"] == "approved"
        assert data["decision"]["tier"] == "auto_approved"
        assert data["receipt"] is None

    def test_settle_immediately(self):
        data = json.loads(process_claim(claim_json(), settle=True))
        assert data["ok"] is True
        assert data["claim"]["status"] == "paid"
        assert data["claim"]["settlement_reference"] == data["receipt"]["transaction_id"]

    def test_validation_failure(self):
        data = json.loads(process_claim(claim_json(policy_id="POL-404")))
        assert data["ok"] is False
        assert data["error"]["kind"] == "validation"
        assert data["error"]["reason_code"] == "policy_not_found"

    def test_generates_claim_id(self):
        payload = json.loads(claim_json())
        del payload["id"]
        data = json.loads(process_claim(json.dumps(payload)))
        assert data["ok"] is True
        assert data["claim"]["id"].startswith("CLM-")

    def test_invalid_json(self):
        data = json.loads(process_claim("{oops"))
        assert data["ok"] is False
        assert "not valid JSON" in data["error"]["message"]

    def test_non_object(self):
        data = json.loads(process_claim("[1, 2]"))
        assert data["ok"] is False
        assert "JSON object" in data["error"]["message"]

    def test_invalid_claim_data(self):
        data = json.loads(process_claim(json.dumps({"policy_id": "POL-001"})))
        assert data["ok"] is False
        assert "invalid claim data" in data["error"]["message"]

    def test_reprocessing_is_an_invalid_transition(self):
        process_claim(claim_json())
        data = json.loads(process_claim(claim_json()))
        assert data["ok"] is False
        assert data["error"]["kind"] == "invalid_transition"


class TestSettleAndApprove:
    """Test settle_claim and approve_claim."""

    def test_settle_approved_claim(self):
        process_claim(claim_json())
        data = json.loads(settle_claim("CLM-MCP1"))
        assert data["ok"] is True
        assert data["claim"]["status"] == "paid"

    def test_settle_unknown_claim(self):
        data = json.loads(settle_claim("CLM-NOPE"))
        assert data["ok"] is False
        assert "claim not found" in data["error"]["message"]

    def test_approve_under_review(self):
        process_claim(claim_json("CLM-MGR", "7500"))
        data = json.loads(approve_claim("CLM-MGR", "manager@example.com"))
        assert data["ok"] is True
        assert data["claim"]["status"] == "paid"

    def test_approve_without_settling(self):
        process_claim(claim_json("CLM-MGR", "7500"))
        data = json.loads(approve_claim("CLM-MGR", "manager", settle=False))
        assert data["claim"]["status"] == "approved"

    def test_approve_already_approved_is_rejected(self):
        process_claim(claim_json())
        data = json.loads(approve_claim("CLM-MCP1", "manager"))
        assert data["ok"] is False
        assert data["error"]["kind"] == "invalid_transition"


class TestQueries:
    """Test status, audit and metrics tools."""

    def test_get_claim_status(self):
        process_claim(claim_json("CLM-MGR", "7500"))
        data = json.loads(get_claim_status("CLM-MGR"))
        assert data["status"] == "under_review"
        assert data["approval_tier"] == "manager"

    def test_get_claim_status_unknown(self):
        data = json.loads(get_claim_status("CLM-NOPE"))
        assert data["ok"] is False

    def test_get_claim_audit(self):
        process_claim(claim_json(), settle=True)
        records = json.loads(get_claim_audit("CLM-MCP1"))
        assert [r["kind"] for r in records] == ["integration_attempt"]
        assert records[0]["context"]["status"] == "success"

    def test_get_claim_audit_records_validation_failure(self):
        process_claim(claim_json("CLM-BAD", policy_id="POL-404"))
        records = json.loads(get_claim_audit("CLM-BAD"))
        assert records[0]["kind"] == "validation"
        assert records[0]["operation"] == "validate"

    def test_get_settlement_metrics_global(self):
        process_claim(claim_json(), settle=True)
        data = json.loads(get_settlement_metrics())
        assert data["global_stats"]["total_attempts"] == 1
        assert data["claims"][0]["claim_id"] == "CLM-MCP1"
        assert data["circuits"]

    def test_get_settlement_metrics_for_claim(self):
        process_claim(claim_json(), settle=True)
        data = json.loads(get_settlement_metrics("CLM-MCP1"))
        assert data["total_attempts"] == 1
        assert data["outcome"] == "paid"

    def test_get_settlement_metrics_unknown_claim(self):
        data = json.loads(get_settlement_metrics("CLM-NOPE"))
        assert "error" in data
