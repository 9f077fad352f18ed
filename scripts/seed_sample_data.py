"""Load sample policies and claims into SQLite for demos of the settlement CLI.

Run from project root:
    python scripts/seed_sample_data.py

Uses SAMPLE_PORTFOLIO_PATH (default data/sample_portfolio.json) and
CLAIMS_DB_PATH (default data/claims.db). Re-running the script does not
duplicate claims; policies are upserted.
"""

import json
import os
import sys
from pathlib import Path

# Project root (parent of scripts/)
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT / "src") not in sys.path:
    sys.path.insert(0, str(_ROOT / "src"))

from claim_settlement.db.repository import ClaimRepository, PolicyRepository  # noqa: E402
from claim_settlement.models.claim import Claim, Policy  # noqa: E402


def _get_portfolio_path() -> Path:
    path = os.environ.get("SAMPLE_PORTFOLIO_PATH")
    if path:
        return Path(path)
    return _ROOT / "data" / "sample_portfolio.json"


def main() -> None:
    portfolio_path = _get_portfolio_path()
    if not portfolio_path.exists():
        print(f"Sample portfolio not found: {portfolio_path}")
        return

    with open(portfolio_path, encoding="utf-8") as f:
        portfolio = json.load(f)

    policies = PolicyRepository()
    for raw in portfolio.get("policies", []):
        policies.upsert(Policy.model_validate(raw))

    claims = ClaimRepository()
    created = 0
    for raw in portfolio.get("claims", []):
        claim = Claim.model_validate(raw)
        if claims.get(claim.id) is None:
            claims.create(claim)
            created += 1

    print(
        f"Loaded {len(portfolio.get('policies', []))} policies and "
        f"{created} new claims into {os.environ.get('CLAIMS_DB_PATH', 'data/claims.db')}"
    )


if __name__ == "__main__":
    main()
