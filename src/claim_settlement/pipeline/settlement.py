"""Settlement client: pays an approved claim through the payment gateway.

Each attempt passes through the ``payment`` circuit breaker and is recorded in
the audit trail and in settlement metrics. 5xx responses and transport errors
are retried with exponential backoff (1s, 2s, 4s by default); 4xx responses
are final. Backoff sleeps go through a ``CancellationToken`` so a batch
deadline can stop them.
"""

import time
from typing import Any, Optional

from tenacity import RetryError

from claim_settlement.config.settings import get_settlement_config
from claim_settlement.errors import ErrorKind, Failure, PipelineError, Result, Severity
from claim_settlement.models.claim import Claim, SettlementReceipt
from claim_settlement.observability.audit import AuditLogger
from claim_settlement.observability.logger import get_logger
from claim_settlement.observability.metrics import SettlementMetrics, get_metrics
from claim_settlement.pipeline.circuit_breaker import CircuitBreakerRegistry
from claim_settlement.pipeline.gateway import GatewayResponse, PaymentGateway
from claim_settlement.pipeline.validation import format_amount
from claim_settlement.utils.retry import (
    RETRYABLE_EXCEPTIONS,
    CancellationToken,
    settlement_retrying,
)

logger = get_logger(__name__)


class RetryableSettlementError(Exception):
    """A 5xx response or transport failure; worth another attempt."""

    def __init__(self, message: str, status_code: Optional[int] = None, timed_out: bool = False):
        self.status_code = status_code
        self.timed_out = timed_out
        super().__init__(message)


class SettlementClient:
    """Calls the payment gateway with timeout, retry/backoff and circuit breaking."""

    def __init__(
        self,
        gateway: PaymentGateway,
        breakers: CircuitBreakerRegistry,
        audit: AuditLogger,
        metrics: Optional[SettlementMetrics] = None,
        endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
    ):
        cfg = get_settlement_config()
        self.gateway = gateway
        self.breakers = breakers
        self.audit = audit
        self.metrics = metrics
        self.endpoint = endpoint or cfg["endpoint"]
        self.timeout = cfg["timeout"] if timeout is None else timeout
        self.max_retries = cfg["max_retries"] if max_retries is None else max_retries
        self.backoff_base = cfg["backoff_base"] if backoff_base is None else backoff_base

    def with_audit(self, audit: AuditLogger) -> "SettlementClient":
        """Copy sharing gateway, breakers and metrics but writing to another audit logger."""
        return SettlementClient(
            self.gateway,
            self.breakers,
            audit,
            metrics=self.metrics,
            endpoint=self.endpoint,
            timeout=self.timeout,
            max_retries=self.max_retries,
            backoff_base=self.backoff_base,
        )

    def settle(self, claim: Claim, cancel: Optional[CancellationToken] = None) -> Result[SettlementReceipt]:
        if not claim.id or claim.claimed_amount <= 0:
            return Result.fail(
                Failure(
                    kind=ErrorKind.VALIDATION,
                    message=(
                        f"cannot settle claim '{claim.id}' with amount "
                        f"{format_amount(claim.claimed_amount)}; a claim id and a positive "
                        "amount are required"
                    ),
                    reason_code="settlement_precondition",
                    action="Fix the claim record before requesting settlement",
                )
            )

        metrics = self.metrics or get_metrics()
        breaker = self.breakers.get(self.endpoint)
        attempts = 0
        started = time.monotonic()

        def _attempt() -> GatewayResponse:
            nonlocal attempts
            if cancel is not None:
                cancel.check()
            if not breaker.allow_request():
                raise PipelineError.of(
                    ErrorKind.CIRCUIT_OPEN,
                    f"payment endpoint '{self.endpoint}' circuit is open; no call made for "
                    f"claim {claim.id} after {attempts} attempt(s)",
                    reason_code="circuit_open",
                    action="Retry settlement after the endpoint recovers",
                    context={"endpoint": self.endpoint, "attempts": attempts},
                )
            attempts += 1
            return self._call(claim, attempts, breaker, metrics)

        try:
            for attempt in settlement_retrying(
                max_retries=self.max_retries,
                backoff_base=self.backoff_base,
                retry_on=(RetryableSettlementError,),
                cancel=cancel,
            ):
                with attempt:
                    response = _attempt()
        except PipelineError as e:
            metrics.record_outcome(claim.id, e.kind.value)
            return Result.fail(e.failure)
        except RetryableSettlementError as e:
            kind = ErrorKind.SETTLEMENT_TIMEOUT if e.timed_out else ErrorKind.SETTLEMENT_EXHAUSTED
            metrics.record_outcome(claim.id, kind.value)
            return Result.fail(
                Failure(
                    kind=kind,
                    message=(
                        f"settlement of claim {claim.id} failed after {attempts} attempt(s) "
                        f"({self.max_retries} retries); last cause: {e}"
                    ),
                    reason_code="exhausted_retries",
                    action="Leave the claim approved and retry settlement later",
                    cause=e,
                    context={"attempts": attempts, "endpoint": self.endpoint, "last_status": e.status_code},
                )
            )
        except RetryError as e:
            # Only reachable if tenacity is configured without reraise
            metrics.record_outcome(claim.id, ErrorKind.SETTLEMENT_EXHAUSTED.value)
            return Result.fail(
                Failure(
                    kind=ErrorKind.SETTLEMENT_EXHAUSTED,
                    message=f"settlement of claim {claim.id} failed after {attempts} attempt(s)",
                    cause=e,
                )
            )

        if response.is_client_error:
            metrics.record_outcome(claim.id, ErrorKind.SETTLEMENT_REJECTED.value)
            return Result.fail(
                Failure(
                    kind=ErrorKind.SETTLEMENT_REJECTED,
                    message=(
                        f"payment gateway rejected claim {claim.id} for amount "
                        f"{format_amount(claim.claimed_amount)} with status {response.status_code}"
                    ),
                    reason_code=f"gateway_{response.status_code}",
                    action="Review the payment details with the payment provider; the request will not be retried",
                    context={"status_code": response.status_code, "body": response.body, "attempts": attempts},
                )
            )

        metrics.record_outcome(claim.id, "paid")
        receipt = SettlementReceipt(
            claim_id=claim.id,
            transaction_id=response.transaction_id or f"{claim.id}-{attempts}",
            amount=claim.claimed_amount,
            attempts=attempts,
            latency_ms=(time.monotonic() - started) * 1000,
        )
        logger.log_event(
            "settlement_completed",
            claim_id=claim.id,
            transaction_id=receipt.transaction_id,
            attempts=attempts,
        )
        return Result.success(receipt)

    def _call(self, claim: Claim, attempt: int, breaker: Any, metrics: SettlementMetrics) -> GatewayResponse:
        """One gateway call: classify, update the breaker, audit and measure."""
        start = time.monotonic()
        try:
            response = self.gateway.charge(claim.id, claim.claimed_amount, claim.policy_id, timeout=self.timeout)
        except RETRYABLE_EXCEPTIONS as e:
            latency_ms = (time.monotonic() - start) * 1000
            breaker.record_failure()
            timed_out = isinstance(e, TimeoutError)
            self._record_attempt(claim, attempt, latency_ms, metrics, "timeout" if timed_out else "error", error=str(e))
            raise RetryableSettlementError(
                f"{'timeout' if timed_out else 'transport error'}: {e}", timed_out=timed_out
            ) from e
        except Exception as e:
            latency_ms = (time.monotonic() - start) * 1000
            breaker.record_failure()
            self._record_attempt(claim, attempt, latency_ms, metrics, "error", error=repr(e))
            raise

        latency_ms = (time.monotonic() - start) * 1000
        if response.is_success or response.is_client_error:
            breaker.record_success()
            status = "success" if response.is_success else "rejected"
            self._record_attempt(claim, attempt, latency_ms, metrics, status, status_code=response.status_code)
            return response

        breaker.record_failure()
        self._record_attempt(claim, attempt, latency_ms, metrics, "error", status_code=response.status_code)
        raise RetryableSettlementError(
            f"gateway returned status {response.status_code}", status_code=response.status_code
        )

    def _record_attempt(
        self,
        claim: Claim,
        attempt: int,
        latency_ms: float,
        metrics: SettlementMetrics,
        status: str,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        metrics.record_attempt(
            claim.id, self.endpoint, attempt, latency_ms, status=status, status_code=status_code, error=error
        )
        detail = f"status {status_code}" if status_code is not None else (error or status)
        self.audit.log(
            ErrorKind.INTEGRATION_ATTEMPT,
            Severity.LOW if status == "success" else Severity.MEDIUM,
            "settle",
            claim_id=claim.id,
            message=(
                f"payment attempt {attempt} for claim {claim.id} to '{self.endpoint}': "
                f"{status} ({detail}) in {latency_ms:.0f}ms"
            ),
            context={
                "attempt": attempt,
                "endpoint": self.endpoint,
                "latency_ms": round(latency_ms, 2),
                "status": status,
                "status_code": status_code,
                "error": error,
            },
        )
        logger.log_event(
            "settlement_attempt",
            claim_id=claim.id,
            attempt=attempt,
            status=status,
            status_code=status_code,
            latency_ms=round(latency_ms, 2),
        )
