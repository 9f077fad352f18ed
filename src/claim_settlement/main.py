"""CLI entry point for the claim settlement pipeline.

Commands load claims and policies from JSON files into the SQLite store and
drive them through the pipeline. Logs go to stderr; results are printed as
JSON on stdout.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

# Ensure src is on path when run as script
if __name__ == "__main__" and str(Path(__file__).resolve().parent.parent) not in sys.path:
    sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


def _setup_logging() -> None:
    """Configure logging for CLI usage."""
    from claim_settlement.observability import get_logger

    get_logger("claim_settlement")
    logging.getLogger("claim_settlement").setLevel(
        logging.DEBUG if "--debug" in sys.argv else logging.INFO
    )


def _usage() -> str:
    return """Usage:
  claim-settlement process <claim.json>          Validate, score and route a claim
  claim-settlement settle <claim_id>             Pay an approved claim
  claim-settlement approve <claim_id> <approver> Approve a claim under review and pay it
  claim-settlement reject <claim_id> <reason>    Reject a claim under review
  claim-settlement batch <claims.json>           Process and settle a list of claims
  claim-settlement status <claim_id>             Get claim status
  claim-settlement history <claim_id>            Get claim audit trail
  claim-settlement metrics [claim_id]            Show settlement metrics
  claim-settlement load-policies <policies.json> Load policies into the store

Options:
  --settle                                       process: settle immediately if approved
  --no-settle                                    approve: do not settle after approval
  --timeout=SECONDS                              batch: cancel unfinished items after SECONDS
  --debug                                        Enable debug logging
  --json                                         Use JSON log format
"""


def _fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _load_json(path: Path) -> Any:
    if not path.exists():
        _fail(f"File not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        _fail(f"Invalid JSON in {path}: {e}")


def _option(options: list[str], name: str) -> str | None:
    prefix = f"--{name}="
    for opt in options:
        if opt.startswith(prefix):
            return opt[len(prefix):]
    return None


def _parse_claim(data: dict):
    """Build a Claim from JSON data; returns (claim, document_count)."""
    from claim_settlement.db.repository import generate_claim_id
    from claim_settlement.models.claim import Claim

    data = dict(data)
    document_count = data.pop("document_count", None)
    data.setdefault("id", generate_claim_id())
    return Claim.model_validate(data), document_count


def _stored_claim(repo, claim):
    """Return the stored version of ``claim``, creating it on first sight."""
    existing = repo.get(claim.id)
    if existing is not None:
        return existing
    repo.create(claim)
    return claim


def _require_claim(repo, claim_id: str):
    claim = repo.get(claim_id)
    if claim is None:
        _fail(f"Claim not found: {claim_id}")
    return claim


def _print_result(result) -> None:
    if not result.ok:
        print(json.dumps(result.failure.to_dict(), indent=2, default=str))
        _fail(result.failure.describe())
    print(json.dumps(result.value.model_dump(mode="json"), indent=2))


def cmd_process(claim_path: Path, settle: bool = False) -> None:
    """Process a claim from a JSON file."""
    from claim_settlement.errors import PipelineError
    from claim_settlement.pipeline.factory import build_orchestrator

    data = _load_json(claim_path)
    try:
        claim, document_count = _parse_claim(data)
    except ValidationError as e:
        print("Error: Invalid claim data:", file=sys.stderr)
        print(e.json(), file=sys.stderr)
        sys.exit(1)
    orchestrator = build_orchestrator()
    try:
        claim = _stored_claim(orchestrator.claims, claim)
    except PipelineError as e:
        _fail(e.failure.describe())
    _print_result(orchestrator.process(claim, document_count=document_count, settle=settle))


def cmd_settle(claim_id: str) -> None:
    """Pay an approved claim."""
    from claim_settlement.pipeline.factory import build_orchestrator

    orchestrator = build_orchestrator()
    claim = _require_claim(orchestrator.claims, claim_id)
    _print_result(orchestrator.settle(claim))


def cmd_approve(claim_id: str, approver: str, settle: bool = True) -> None:
    """Approve a claim under review."""
    from claim_settlement.pipeline.factory import build_orchestrator

    orchestrator = build_orchestrator()
    claim = _require_claim(orchestrator.claims, claim_id)
    _print_result(orchestrator.approve(claim, approver, settle=settle))


def cmd_reject(claim_id: str, reason: str) -> None:
    """Reject a claim under review."""
    from claim_settlement.pipeline.factory import build_orchestrator

    orchestrator = build_orchestrator()
    claim = _require_claim(orchestrator.claims, claim_id)
    _print_result(orchestrator.reject(claim, reason))


def cmd_batch(claims_path: Path, timeout: float | None = None) -> None:
    """Process and settle every claim in a JSON list."""
    from claim_settlement.errors import PipelineError
    from claim_settlement.pipeline.factory import build_bulk_processor

    data = _load_json(claims_path)
    if not isinstance(data, list):
        _fail(f"{claims_path} must contain a JSON list of claims")
    processor = build_bulk_processor()
    claims = []
    for index, item in enumerate(data):
        try:
            claim, _ = _parse_claim(item)
        except ValidationError as e:
            _fail(f"Invalid claim data at index {index}: {e}")
        try:
            claims.append(_stored_claim(processor.claims, claim))
        except PipelineError as e:
            _fail(e.failure.describe())
    result = processor.process_batch(claims, timeout=timeout)
    output = result.summary()
    output["failed_items"] = [item.to_dict() for item in result.failed]
    print(json.dumps(output, indent=2, default=str))
    if result.failed:
        sys.exit(2)


def cmd_status(claim_id: str) -> None:
    """Print claim status."""
    from claim_settlement.db.repository import ClaimRepository

    claim = _require_claim(ClaimRepository(), claim_id)
    print(json.dumps(claim.model_dump(mode="json"), indent=2))


def cmd_history(claim_id: str) -> None:
    """Print the claim's audit trail."""
    from claim_settlement.db.repository import AuditRepository, ClaimRepository

    _require_claim(ClaimRepository(), claim_id)
    records = AuditRepository().list_for_claim(claim_id)
    print(json.dumps([r.model_dump(mode="json") for r in records], indent=2))


def cmd_load_policies(policies_path: Path) -> None:
    """Upsert policies from a JSON list."""
    from claim_settlement.db.repository import PolicyRepository
    from claim_settlement.models.claim import Policy

    data = _load_json(policies_path)
    if not isinstance(data, list):
        _fail(f"{policies_path} must contain a JSON list of policies")
    try:
        policies = [Policy.model_validate(p) for p in data]
    except ValidationError as e:
        print("Error: Invalid policy data:", file=sys.stderr)
        print(e.json(), file=sys.stderr)
        sys.exit(1)
    repo = PolicyRepository()
    for policy in policies:
        repo.upsert(policy)
    print(f"Loaded {len(policies)} policies")


def cmd_metrics(claim_id: str | None = None) -> None:
    """Display settlement metrics rebuilt from the audit trail.

    Args:
        claim_id: Optional claim ID. If provided, shows metrics for that claim.
                 Otherwise, shows global metrics summary.
    """
    from claim_settlement.db.repository import AuditRepository
    from claim_settlement.observability import SettlementMetrics

    audit = AuditRepository()
    records = audit.list_for_claim(claim_id) if claim_id else audit.list_all()
    metrics = SettlementMetrics.from_audit_records(records)

    if claim_id:
        summary = metrics.get_claim_summary(claim_id)
        if summary is None:
            print(f"No metrics found for claim: {claim_id}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(summary.to_dict(), indent=2, default=str))
        return

    global_stats = metrics.get_global_stats()
    if global_stats["total_claims"] == 0:
        print("No settlement attempts have been recorded.")
        return
    print("Global Metrics Summary:")
    print(json.dumps(global_stats, indent=2, default=str))
    print("\nPer-Claim Summaries:")
    for summary in metrics.get_all_summaries():
        print(f"\n  {summary.claim_id}:")
        print(f"    Attempts: {summary.total_attempts} ({summary.failed_attempts} failed)")
        print(f"    Latency: {summary.total_latency_ms:.0f}ms (p95: {summary.p95_latency_ms:.0f}ms)")
        print(f"    Outcome: {summary.outcome}")


def main() -> None:
    """Run the settlement CLI."""
    argv = [arg for arg in sys.argv[1:] if not arg.startswith("--")]
    options = [arg for arg in sys.argv[1:] if arg.startswith("--")]

    if "--json" in options:
        os.environ["CLAIM_SETTLEMENT_LOG_FORMAT"] = "json"
    if "--debug" in options:
        os.environ["CLAIM_SETTLEMENT_LOG_LEVEL"] = "DEBUG"

    _setup_logging()

    if not argv:
        print(_usage(), file=sys.stderr)
        sys.exit(1)

    command = argv[0].lower()
    args = argv[1:]

    # Commands that take exactly one argument
    single = {
        "process": "<claim.json>",
        "settle": "<claim_id>",
        "batch": "<claims.json>",
        "status": "<claim_id>",
        "history": "<claim_id>",
        "load-policies": "<policies.json>",
    }
    if command in single:
        if not args:
            print(f"Error: {command} requires {single[command]}", file=sys.stderr)
            print(_usage(), file=sys.stderr)
            sys.exit(1)
        target = args[0]
        if command == "process":
            cmd_process(Path(target), settle="--settle" in options)
        elif command == "settle":
            cmd_settle(target)
        elif command == "batch":
            raw_timeout = _option(options, "timeout")
            try:
                timeout = float(raw_timeout) if raw_timeout else None
            except ValueError:
                _fail(f"--timeout must be a number of seconds, got {raw_timeout!r}")
            cmd_batch(Path(target), timeout=timeout)
        elif command == "status":
            cmd_status(target)
        elif command == "history":
            cmd_history(target)
        else:
            cmd_load_policies(Path(target))
        return

    if command in ("approve", "reject"):
        if len(args) < 2:
            label = "<approver>" if command == "approve" else "<reason>"
            print(f"Error: {command} requires <claim_id> {label}", file=sys.stderr)
            print(_usage(), file=sys.stderr)
            sys.exit(1)
        if command == "approve":
            cmd_approve(args[0], args[1], settle="--no-settle" not in options)
        else:
            cmd_reject(args[0], " ".join(args[1:]))
        return

    if command == "metrics":
        cmd_metrics(args[0] if args else None)
        return

    print(f"Error: Unknown command: {command}", file=sys.stderr)
    print(_usage(), file=sys.stderr)
    sys.exit(1)


if __name__ == "__main__":
    main()
