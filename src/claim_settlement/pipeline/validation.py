"""Structural and business validation of a claim against its policy."""

from datetime import date
from decimal import Decimal
from typing import Callable, Optional

from claim_settlement.config.settings import VALIDATION_MIN_DOCUMENTS
from claim_settlement.errors import ErrorKind, Failure, Result
from claim_settlement.models.claim import Claim, Policy, PolicyStatus, ValidatedClaim


def format_amount(amount: Decimal) -> str:
    """Render a decimal without exponent or trailing zeros (``Decimal('1E+4')`` -> ``10000``)."""
    normalized = amount.normalize()
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal(1)))
    return format(normalized, "f")


def _fail(reason_code: str, message: str, action: str, **context) -> Result[ValidatedClaim]:
    return Result.fail(
        Failure(
            kind=ErrorKind.VALIDATION,
            message=message,
            reason_code=reason_code,
            action=action,
            context=context,
        )
    )


class ValidationEngine:
    """Evaluates a claim; never mutates it and has no side effects.

    Checks run in order and stop at the first failure: policy exists and is
    active, incident date is not in the future and falls inside the policy
    window, claimed amount is positive, line items are positive and sum
    exactly to the claimed amount, and (when a count is supplied) enough
    supporting documents were provided.
    """

    def __init__(
        self,
        min_documents: int = VALIDATION_MIN_DOCUMENTS,
        today: Callable[[], date] = date.today,
    ):
        self.min_documents = min_documents
        self._today = today

    def validate(
        self,
        claim: Claim,
        policy: Optional[Policy],
        document_count: Optional[int] = None,
    ) -> Result[ValidatedClaim]:
        if policy is None:
            return _fail(
                "policy_not_found",
                f"policy {claim.policy_id} referenced by claim {claim.id} does not exist",
                "Check the policy reference on the claim",
                policy_id=claim.policy_id,
            )
        if policy.status != PolicyStatus.ACTIVE:
            return _fail(
                "policy_inactive",
                f"policy {policy.id} is {policy.status.value}; expected active",
                "Reinstate the policy or file the claim against an active policy",
                policy_id=policy.id,
                policy_status=policy.status.value,
            )

        today = self._today()
        if claim.incident_date > today:
            return _fail(
                "incident_in_future",
                f"incident date {claim.incident_date.isoformat()} is after today "
                f"({today.isoformat()})",
                "Correct the incident date",
                incident_date=claim.incident_date,
            )
        if not (policy.start_date <= claim.incident_date <= policy.end_date):
            return _fail(
                "incident_outside_coverage",
                f"incident date {claim.incident_date.isoformat()} is outside policy "
                f"{policy.id} coverage {policy.start_date.isoformat()} to "
                f"{policy.end_date.isoformat()}",
                "Correct the incident date or the policy reference",
                incident_date=claim.incident_date,
                policy_start=policy.start_date,
                policy_end=policy.end_date,
            )

        if claim.claimed_amount <= 0:
            return _fail(
                "non_positive_amount",
                f"claimed amount {format_amount(claim.claimed_amount)} must be greater than 0",
                "Enter a positive claimed amount",
                claimed_amount=claim.claimed_amount,
            )

        if claim.line_items:
            for index, item in enumerate(claim.line_items):
                if item.amount <= 0:
                    return _fail(
                        "line_item_non_positive",
                        f"line item {index + 1} ({item.description}) amount "
                        f"{format_amount(item.amount)} must be greater than 0",
                        "Remove the line item or enter a positive amount",
                        line_item=index + 1,
                        amount=item.amount,
                    )
            total = claim.line_item_total()
            if claim.claimed_amount != total:
                return _fail(
                    "line_item_sum_mismatch",
                    f"claimed amount {format_amount(claim.claimed_amount)} does not equal "
                    f"line-item sum {format_amount(total)}",
                    "Correct the line items or the claimed amount so they match",
                    claimed_amount=claim.claimed_amount,
                    line_item_sum=total,
                )

        if document_count is not None and document_count < self.min_documents:
            return _fail(
                "insufficient_documents",
                f"{document_count} supporting document(s) supplied; at least "
                f"{self.min_documents} required",
                "Attach the missing supporting documents",
                document_count=document_count,
                min_documents=self.min_documents,
            )

        return Result.success(ValidatedClaim(claim=claim, policy=policy))
