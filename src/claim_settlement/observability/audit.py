"""Audit trail: append-only records of every failure and integration attempt.

``AuditLogger`` never raises. If the audit sink rejects a write, the records
go once to the Python logger as a fallback and the caller carries on.
Critical entries also trigger a best-effort notification.
"""

import json
import logging
import threading
import traceback
from typing import Any, Iterable, Optional, Protocol, Union

from claim_settlement.config.settings import AUDIT_MAX_MESSAGE_BYTES
from claim_settlement.errors import ErrorKind, Failure, Severity
from claim_settlement.models.claim import AuditRecord
from claim_settlement.utils.sanitization import sanitize_context, sanitize_message

logger = logging.getLogger(__name__)

KindLike = Union[ErrorKind, str]
SeverityLike = Union[Severity, str]


class AuditSink(Protocol):
    def append(self, record: AuditRecord) -> None: ...

    def append_many(self, records: list[AuditRecord]) -> None: ...


class NotificationSink(Protocol):
    def notify(
        self, subject: str, body: str, severity: str, context: Optional[dict[str, Any]] = None
    ) -> None: ...


def _value(v: Any) -> str:
    return v.value if hasattr(v, "value") else str(v)


class AuditLogger:
    """Writes ``AuditRecord`` entries to an audit sink."""

    def __init__(
        self,
        sink: AuditSink,
        notifier: Optional[NotificationSink] = None,
        max_message_bytes: int = AUDIT_MAX_MESSAGE_BYTES,
    ):
        self.sink = sink
        self.notifier = notifier
        self.max_message_bytes = max_message_bytes

    def build(
        self,
        kind: KindLike,
        severity: SeverityLike,
        operation: str,
        claim_id: Optional[str] = None,
        message: str = "",
        context: Optional[dict[str, Any]] = None,
        exc: Optional[BaseException] = None,
    ) -> AuditRecord:
        snapshot = sanitize_context(context)
        if exc is not None:
            snapshot["exception"] = f"{type(exc).__name__}: {exc}"
            snapshot["stack"] = "".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            )[-4000:]
        return AuditRecord(
            kind=_value(kind),
            severity=_value(severity),
            operation=operation,
            claim_id=claim_id,
            message=sanitize_message(message, self.max_message_bytes),
            context=snapshot,
        )

    def build_failure(
        self,
        failure: Failure,
        operation: str,
        claim_id: Optional[str] = None,
        severity: Optional[SeverityLike] = None,
    ) -> AuditRecord:
        context = dict(failure.context)
        if failure.reason_code:
            context["reason_code"] = failure.reason_code
        if failure.action:
            context["action"] = failure.action
        return self.build(
            failure.kind,
            severity or failure.severity,
            operation,
            claim_id=claim_id,
            message=failure.message,
            context=context,
            exc=failure.cause,
        )

    def log(
        self,
        kind: KindLike,
        severity: SeverityLike,
        operation: str,
        claim_id: Optional[str] = None,
        message: str = "",
        context: Optional[dict[str, Any]] = None,
        exc: Optional[BaseException] = None,
    ) -> Optional[AuditRecord]:
        """Record one entry. Returns the record, or None if it could not be built."""
        try:
            record = self.build(kind, severity, operation, claim_id, message, context, exc)
        except Exception:
            logger.exception("Could not build audit record for %s (%s)", operation, _value(kind))
            return None
        return self._emit(record)

    def log_failure(
        self,
        failure: Failure,
        operation: str,
        claim_id: Optional[str] = None,
        severity: Optional[SeverityLike] = None,
    ) -> Optional[AuditRecord]:
        """Record a classified failure at its default (or the given) severity."""
        try:
            record = self.build_failure(failure, operation, claim_id, severity)
        except Exception:
            logger.exception("Could not build audit record for %s (%s)", operation, failure.kind.value)
            return None
        return self._emit(record)

    def _emit(self, record: AuditRecord) -> AuditRecord:
        self._write([record])
        if record.severity == Severity.CRITICAL.value:
            self._notify_critical([record])
        return record

    def log_batch(self, entries: Iterable[AuditRecord]) -> int:
        """Write many records with a single sink append. Returns how many were written."""
        records = list(entries)
        if not records:
            return 0
        written = self._write(records)
        critical = [r for r in records if r.severity == Severity.CRITICAL.value]
        if critical:
            self._notify_critical(critical)
        return len(records) if written else 0

    def notify(
        self,
        subject: str,
        body: str,
        severity: SeverityLike = Severity.LOW,
        context: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Best-effort notification. A delivery failure is audited, never raised."""
        if self.notifier is None:
            return False
        try:
            self.notifier.notify(subject, body, _value(severity), sanitize_context(context))
            return True
        except Exception as e:
            logger.warning("Notification delivery failed: %s", e)
            try:
                record = self.build(
                    ErrorKind.NOTIFICATION,
                    Severity.MEDIUM,
                    "notify",
                    message=f"notification '{subject}' could not be delivered: {e}",
                    exc=e,
                )
                self._write([record])
            except Exception:
                logger.exception("Could not audit notification failure")
            return False

    def _notify_critical(self, records: list[AuditRecord]) -> None:
        if len(records) == 1:
            r = records[0]
            subject = f"Critical {r.kind} in {r.operation}"
            body = r.message
        else:
            subject = f"{len(records)} critical audit entries"
            body = "\n".join(f"[{r.kind}] {r.claim_id or '-'}: {r.message[:200]}" for r in records)
        self.notify(
            subject,
            body,
            Severity.CRITICAL,
            {"claim_ids": [r.claim_id for r in records if r.claim_id]},
        )

    def _write(self, records: list[AuditRecord]) -> bool:
        try:
            if len(records) == 1:
                self.sink.append(records[0])
            else:
                self.sink.append_many(records)
            return True
        except Exception as e:
            self._fallback(records, e)
            return False

    def _fallback(self, records: list[AuditRecord], error: Exception) -> None:
        try:
            logger.error(
                "Audit sink write failed (%s); fallback copy of %d record(s): %s",
                error,
                len(records),
                json.dumps([r.model_dump(mode="json") for r in records]),
            )
        except Exception:
            # Auditing must never abort the caller's operation
            pass


class BufferedAuditLogger(AuditLogger):
    """Collects records in memory and flushes them to ``parent`` with one ``log_batch``.

    Used by bulk processing so the whole batch reaches the sink in a single append.
    """

    def __init__(self, parent: AuditLogger):
        super().__init__(parent.sink, parent.notifier, parent.max_message_bytes)
        self.parent = parent
        self._buffer: list[AuditRecord] = []
        self._buffer_lock = threading.Lock()

    def _emit(self, record: AuditRecord) -> AuditRecord:
        with self._buffer_lock:
            self._buffer.append(record)
        return record

    def log_batch(self, entries: Iterable[AuditRecord]) -> int:
        records = list(entries)
        with self._buffer_lock:
            self._buffer.extend(records)
        return len(records)

    @property
    def records(self) -> list[AuditRecord]:
        with self._buffer_lock:
            return list(self._buffer)

    def flush(self, extra: Iterable[AuditRecord] = ()) -> int:
        """Write buffered records plus ``extra`` to the parent in one batch."""
        with self._buffer_lock:
            records = self._buffer + list(extra)
            self._buffer = []
        return self.parent.log_batch(records)
