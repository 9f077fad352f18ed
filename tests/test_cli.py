"""Unit tests for CLI (main.py) commands and edge cases."""

import json
from datetime import date, timedelta
from unittest.mock import patch

import pytest

from claim_settlement.db.repository import AuditRepository, ClaimRepository
from claim_settlement.main import _usage, main
from claim_settlement.models.claim import ClaimStatus
from claim_settlement.observability import reset_metrics


def run_cli(*args):
    """Run main() with the given argv; return the exit code (0 when it returns normally)."""
    with patch("sys.argv", ["claim-settlement", *args]):
        try:
            main()
        except SystemExit as e:
            return e.code
    return 0


@pytest.fixture(autouse=True)
def simulated_gateway(monkeypatch):
    monkeypatch.delenv("PAYMENT_GATEWAY_URL", raising=False)


@pytest.fixture
def policies_file(tmp_path):
    path = tmp_path / "policies.json"
    path.write_text(
        json.dumps(
            [
                {
                    "id": "POL-001",
                    "status": "active",
                    "coverage_amount": "100000",
                    "start_date": (date.today() - timedelta(days=400)).isoformat(),
                    "end_date": (date.today() + timedelta(days=365)).isoformat(),
                }
            ]
        )
    )
    return path


def claim_data(claim_id="CLM-CLI1", amount="1200", **overrides):
    data = {
        "id": claim_id,
        "policy_id": "POL-001",
        "claimed_amount": amount,
        "line_items": [{"description": "Repair", "amount": amount}],
        "incident_date": (date.today() - timedelta(days=10)).isoformat(),
    }
    data.update(overrides)
    return data


@pytest.fixture
def write_json(tmp_path):
    def _write(name, data):
        path = tmp_path / name
        path.write_text(json.dumps(data))
        return path

    return _write


@pytest.fixture
def loaded(policies_file, capsys):
    assert run_cli("load-policies", str(policies_file)) == 0
    capsys.readouterr()


class TestUsage:
    """Tests for usage and argument errors."""

    def test_usage_lists_commands(self):
        usage = _usage()
        for command in ("process", "settle", "approve", "reject", "batch", "status", "history", "metrics", "load-policies"):
            assert command in usage

    def test_no_arguments(self, capsys):
        assert run_cli() == 1
        assert "Usage" in capsys.readouterr().err

    def test_unknown_command(self, capsys):
        assert run_cli("frobnicate") == 1
        assert "Unknown command" in capsys.readouterr().err

    def test_missing_argument(self, capsys):
        assert run_cli("status") == 1
        assert "status requires <claim_id>" in capsys.readouterr().err

    def test_approve_requires_approver(self, capsys):
        assert run_cli("approve", "CLM-1") == 1
        assert "<approver>" in capsys.readouterr().err


class TestCommands:
    """Tests for the command implementations against the temp DB."""

    def test_load_policies(self, policies_file, capsys):
        assert run_cli("load-policies", str(policies_file)) == 0
        assert "Loaded 1 policies" in capsys.readouterr().out

    def test_process_then_settle(self, loaded, write_json, capsys):
        path = write_json("claim.json", claim_data())
        assert run_cli("process", str(path)) == 0
        out = json.loads(capsys.readouterr().out)
        assert out["claim"]["status"] == "approved"
        assert out["decision"]["tier"] == "auto_approved"

        assert run_cli("settle", "CLM-CLI1") == 0
        out = json.loads(capsys.readouterr().out)
        assert out["claim"]["status"] == "paid"
        assert out["receipt"]["transaction_id"].startswith("TXN-")
        assert ClaimRepository().get("CLM-CLI1").status == ClaimStatus.PAID

    def test_process_with_settle_flag(self, loaded, write_json, capsys):
        path = write_json("claim.json", claim_data())
        assert run_cli("process", str(path), "--settle") == 0
        assert json.loads(capsys.readouterr().out)["claim"]["status"] == "paid"

    def test_process_validation_failure(self, loaded, write_json, capsys):
        data = claim_data(amount="10000")
        data["line_items"] = [
            {"description": "Engine", "amount": "9000"},
            {"description": "Tow", "amount": "500"},
        ]
        path = write_json("claim.json", data)
        assert run_cli("process", str(path)) == 1
        captured = capsys.readouterr()
        assert "claimed amount 10000 does not equal line-item sum 9500" in captured.err
        assert json.loads(captured.out)["reason_code"] == "line_item_sum_mismatch"

    def test_process_missing_file(self, capsys, tmp_path):
        assert run_cli("process", str(tmp_path / "nope.json")) == 1
        assert "File not found" in capsys.readouterr().err

    def test_process_invalid_json(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        assert run_cli("process", str(path)) == 1
        assert "Invalid JSON" in capsys.readouterr().err

    def test_process_invalid_claim_data(self, write_json, capsys):
        path = write_json("claim.json", {"policy_id": "POL-001"})
        assert run_cli("process", str(path)) == 1
        assert "Invalid claim data" in capsys.readouterr().err

    def test_approve_and_reject(self, loaded, write_json, capsys):
        run_cli("process", str(write_json("a.json", claim_data("CLM-A", "7500"))))
        run_cli("process", str(write_json("b.json", claim_data("CLM-B", "7500"))))
        capsys.readouterr()
        assert ClaimRepository().get("CLM-A").status == ClaimStatus.UNDER_REVIEW

        assert run_cli("approve", "CLM-A", "manager@example.com") == 0
        assert json.loads(capsys.readouterr().out)["claim"]["status"] == "paid"

        assert run_cli("reject", "CLM-B", "duplicate", "invoice") == 0
        assert json.loads(capsys.readouterr().out)["claim"]["status"] == "rejected"

    def test_approve_without_settle(self, loaded, write_json, capsys):
        run_cli("process", str(write_json("a.json", claim_data("CLM-A", "7500"))))
        capsys.readouterr()
        assert run_cli("approve", "CLM-A", "manager", "--no-settle") == 0
        assert json.loads(capsys.readouterr().out)["claim"]["status"] == "approved"

    def test_settle_unknown_claim(self, capsys):
        assert run_cli("settle", "CLM-NOPE") == 1
        assert "Claim not found" in capsys.readouterr().err

    def test_status_and_history(self, loaded, write_json, capsys):
        run_cli("process", str(write_json("claim.json", claim_data())), "--settle")
        capsys.readouterr()
        assert run_cli("status", "CLM-CLI1") == 0
        assert json.loads(capsys.readouterr().out)["status"] == "paid"
        assert run_cli("history", "CLM-CLI1") == 0
        history = json.loads(capsys.readouterr().out)
        assert [r["kind"] for r in history] == ["integration_attempt"]

    def test_batch(self, loaded, write_json, capsys):
        bad = claim_data("CLM-BAD", "0")
        bad["line_items"] = []
        path = write_json("batch.json", [claim_data("CLM-1"), claim_data("CLM-2"), bad])
        assert run_cli("batch", str(path), "--timeout=30") == 2
        out = json.loads(capsys.readouterr().out)
        assert out["total"] == 3
        assert out["succeeded"] == 2
        assert out["failed"] == 1
        assert out["failed_items"][0]["claim_id"] == "CLM-BAD"
        assert AuditRepository().list_all(kind="batch_summary")

    def test_batch_requires_list(self, write_json, capsys):
        assert run_cli("batch", str(write_json("batch.json", {"id": "x"}))) == 1
        assert "JSON list" in capsys.readouterr().err

    def test_batch_rejects_bad_timeout(self, write_json, capsys):
        assert run_cli("batch", str(write_json("batch.json", [])), "--timeout=soon") == 1
        assert "--timeout" in capsys.readouterr().err

    def test_metrics_empty(self, capsys):
        assert run_cli("metrics") == 0
        assert "No settlement attempts" in capsys.readouterr().out

    def test_metrics_after_settlement(self, loaded, write_json, capsys):
        run_cli("process", str(write_json("claim.json", claim_data())), "--settle")
        capsys.readouterr()
        # a later CLI run starts with empty in-process metrics
        reset_metrics()
        assert run_cli("metrics", "CLM-CLI1") == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["total_attempts"] == 1
        assert summary["successful_attempts"] == 1
        assert summary["outcome"] == "paid"

    def test_metrics_global_from_audit_trail(self, loaded, write_json, capsys):
        run_cli("process", str(write_json("a.json", claim_data("CLM-A"))), "--settle")
        run_cli("process", str(write_json("b.json", claim_data("CLM-B"))), "--settle")
        capsys.readouterr()
        reset_metrics()
        assert run_cli("metrics") == 0
        out = capsys.readouterr().out
        assert "Global Metrics Summary" in out
        assert "CLM-A" in out and "CLM-B" in out

    def test_metrics_unknown_claim(self, capsys):
        assert run_cli("metrics", "CLM-NOPE") == 1
        assert "No metrics found" in capsys.readouterr().err
