"""MCP server exposing claim settlement tools via stdio transport.

This server includes observability endpoints for settlement metrics and the
audit trail.
"""

import json
from typing import Any

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError

from claim_settlement.db.repository import AuditRepository, ClaimRepository, generate_claim_id
from claim_settlement.errors import PipelineError, Result
from claim_settlement.models.claim import Claim
from claim_settlement.observability import get_metrics
from claim_settlement.pipeline.factory import build_orchestrator, get_breakers

mcp = FastMCP("claim-settlement", json_response=True)


def _dump(result: Result) -> str:
    if result.ok:
        return json.dumps({"ok": True, **result.value.model_dump(mode="json")})
    return json.dumps({"ok": False, "error": result.failure.to_dict()}, default=str)


def _error(message: str) -> str:
    return json.dumps({"ok": False, "error": {"message": message}})


@mcp.tool()
def process_claim(claim_json: str, settle: bool = False) -> str:
    """Validate, fraud-score and route a claim; settle it immediately if approved and settle=True.

    Args:
        claim_json: JSON object with policy_id, claimed_amount, line_items,
            incident_date and optionally id, submission_date and document_count.
        settle: Pay the claim when routing auto-approves it.
    """
    try:
        data: dict[str, Any] = json.loads(claim_json)
    except json.JSONDecodeError as e:
        return _error(f"claim_json is not valid JSON: {e}")
    if not isinstance(data, dict):
        return _error("claim_json must be a JSON object")
    document_count = data.pop("document_count", None)
    data.setdefault("id", generate_claim_id())
    try:
        claim = Claim.model_validate(data)
    except ValidationError as e:
        return _error(f"invalid claim data: {e}")

    orchestrator = build_orchestrator()
    try:
        existing = orchestrator.claims.get(claim.id)
        if existing is None:
            orchestrator.claims.create(claim)
        else:
            claim = existing
    except PipelineError as e:
        return _dump(Result.fail(e.failure))
    return _dump(orchestrator.process(claim, document_count=document_count, settle=settle))


@mcp.tool()
def settle_claim(claim_id: str) -> str:
    """Pay an approved claim through the payment gateway."""
    orchestrator = build_orchestrator()
    claim = orchestrator.claims.get(claim_id)
    if claim is None:
        return _error(f"claim not found: {claim_id}")
    return _dump(orchestrator.settle(claim))


@mcp.tool()
def approve_claim(claim_id: str, approver: str, settle: bool = True) -> str:
    """Approve a claim that is under review, then settle it unless settle=False."""
    orchestrator = build_orchestrator()
    claim = orchestrator.claims.get(claim_id)
    if claim is None:
        return _error(f"claim not found: {claim_id}")
    return _dump(orchestrator.approve(claim, approver, settle=settle))


@mcp.tool()
def get_claim_status(claim_id: str) -> str:
    """Get a claim's status, approval tier, fraud score and settlement reference."""
    claim = ClaimRepository().get(claim_id)
    if claim is None:
        return _error(f"claim not found: {claim_id}")
    return json.dumps(claim.model_dump(mode="json"))


@mcp.tool()
def get_claim_audit(claim_id: str) -> str:
    """Get the audit trail (failures and payment attempts) for a claim."""
    records = AuditRepository().list_for_claim(claim_id)
    return json.dumps([r.model_dump(mode="json") for r in records])


# ============================================================================
# OBSERVABILITY TOOLS
# ============================================================================


@mcp.tool()
def get_settlement_metrics(claim_id: str | None = None) -> str:
    """Get settlement metrics.

    Args:
        claim_id: Optional claim ID. If provided, returns metrics for that claim.
                 If not provided, returns global metrics and circuit breaker states.

    Returns:
        JSON string with metrics data including:
        - total_attempts: Payment attempts made
        - failed_attempts: Attempts that failed or were rejected
        - p95_latency_ms: Attempt latency percentile
        - outcome: Final settlement outcome
    """
    metrics = get_metrics()

    if claim_id:
        return metrics.export_json(claim_id)
    return json.dumps(
        {
            "global_stats": metrics.get_global_stats(),
            "claims": [s.to_dict() for s in metrics.get_all_summaries()],
            "circuits": get_breakers().snapshot(),
        },
        default=str,
    )


def main() -> None:
    """Run the MCP server with stdio transport (default)."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
