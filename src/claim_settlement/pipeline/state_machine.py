"""Claim status state machine.

Allowed transitions::

    new -> under_review | approved
    under_review -> approved | rejected
    approved -> paid

``paid`` and ``rejected`` are absorbing; nothing returns to ``new``.
"""

from claim_settlement.errors import ErrorKind, PipelineError
from claim_settlement.models.claim import ClaimStatus

ALLOWED_TRANSITIONS: dict[ClaimStatus, frozenset[ClaimStatus]] = {
    ClaimStatus.NEW: frozenset({ClaimStatus.UNDER_REVIEW, ClaimStatus.APPROVED}),
    ClaimStatus.UNDER_REVIEW: frozenset({ClaimStatus.APPROVED, ClaimStatus.REJECTED}),
    ClaimStatus.APPROVED: frozenset({ClaimStatus.PAID}),
    ClaimStatus.REJECTED: frozenset(),
    ClaimStatus.PAID: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)


def can_transition(current: ClaimStatus, target: ClaimStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def check_transition(claim_id: str, current: ClaimStatus, target: ClaimStatus) -> None:
    """Raise ``PipelineError(invalid_transition)`` unless ``current -> target`` is allowed."""
    if can_transition(current, target):
        return
    allowed = sorted(s.value for s in ALLOWED_TRANSITIONS.get(current, frozenset()))
    raise PipelineError.of(
        ErrorKind.INVALID_TRANSITION,
        f"claim {claim_id} cannot move from {current.value} to {target.value}; "
        f"allowed next statuses: {', '.join(allowed) or 'none (terminal)'}",
        reason_code="invalid_transition",
        action="Reload the claim and apply a transition permitted from its current status",
        context={"claim_id": claim_id, "from": current.value, "to": target.value},
    )
