"""Error taxonomy shared by every pipeline component.

Failures are values: a ``Failure`` tagged with an ``ErrorKind`` plus a message,
an optional reason code and corrective action, and an optional wrapped cause.
Callers branch on ``failure.kind`` instead of catching exception subclasses.
``PipelineError`` carries a ``Failure`` across internal seams where raising is
more natural than returning.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Kinds of failure (and audit-only event kinds)."""

    VALIDATION = "validation"
    ROUTING = "routing"
    CIRCUIT_OPEN = "circuit_open"
    SETTLEMENT_REJECTED = "settlement_rejected"
    SETTLEMENT_EXHAUSTED = "settlement_exhausted_retries"
    SETTLEMENT_TIMEOUT = "settlement_timeout"
    INVALID_TRANSITION = "invalid_transition"
    STORE = "store"
    PROCESSING = "processing"
    CANCELLED = "cancelled"
    # Audit-only kinds
    INTEGRATION_ATTEMPT = "integration_attempt"
    FRAUD_REVIEW = "fraud_review"
    NOTIFICATION = "notification"
    BATCH_SUMMARY = "batch_summary"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


DEFAULT_SEVERITY: dict[ErrorKind, Severity] = {
    ErrorKind.VALIDATION: Severity.LOW,
    ErrorKind.ROUTING: Severity.MEDIUM,
    ErrorKind.CIRCUIT_OPEN: Severity.MEDIUM,
    ErrorKind.CANCELLED: Severity.MEDIUM,
    ErrorKind.NOTIFICATION: Severity.MEDIUM,
    ErrorKind.FRAUD_REVIEW: Severity.MEDIUM,
    ErrorKind.SETTLEMENT_REJECTED: Severity.HIGH,
    ErrorKind.STORE: Severity.HIGH,
    ErrorKind.INVALID_TRANSITION: Severity.HIGH,
    ErrorKind.SETTLEMENT_EXHAUSTED: Severity.CRITICAL,
    ErrorKind.SETTLEMENT_TIMEOUT: Severity.CRITICAL,
    ErrorKind.PROCESSING: Severity.CRITICAL,
    ErrorKind.INTEGRATION_ATTEMPT: Severity.LOW,
    ErrorKind.BATCH_SUMMARY: Severity.LOW,
}

@dataclass(frozen=True)
class Failure:
    """A classified failure.

    Attributes:
        kind: Taxonomy kind; what callers match on.
        message: What happened, with the specific values involved.
        reason_code: Machine-readable reason (e.g. ``line_item_sum_mismatch``).
        action: Corrective action for the caller, if one exists.
        cause: Wrapped underlying exception, if any.
        context: Extra values for the audit trail.
    """

    kind: ErrorKind
    message: str
    reason_code: Optional[str] = None
    action: Optional[str] = None
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def severity(self) -> Severity:
        return DEFAULT_SEVERITY.get(self.kind, Severity.HIGH)

    def describe(self) -> str:
        """Message plus corrective action, for user-facing output."""
        if self.action:
            return f"{self.message}. {self.action}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.reason_code:
            data["reason_code"] = self.reason_code
        if self.action:
            data["action"] = self.action
        if self.cause is not None:
            data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        if self.context:
            data["context"] = self.context
        return data


class PipelineError(Exception):
    """Exception wrapper around a ``Failure``."""

    def __init__(self, failure: Failure):
        self.failure = failure
        super().__init__(failure.message)

    @property
    def kind(self) -> ErrorKind:
        return self.failure.kind

    @classmethod
    def of(cls, kind: ErrorKind, message: str, **kwargs: Any) -> "PipelineError":
        return cls(Failure(kind=kind, message=message, **kwargs))


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a ``Failure``."""

    value: Optional[T] = None
    failure: Optional[Failure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, failure: Failure) -> "Result[T]":
        return cls(failure=failure)
