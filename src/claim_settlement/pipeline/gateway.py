"""Payment capability: the protocol the settlement client calls and two implementations."""

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Optional, Protocol, Union

import requests

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayResponse:
    """Status code and body returned by a payment charge."""

    status_code: int
    transaction_id: Optional[str] = None
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500


class PaymentGateway(Protocol):
    """External payment capability.

    Implementations return a ``GatewayResponse`` for any HTTP-level outcome and
    raise ``TimeoutError`` or ``ConnectionError`` for transport failures.
    """

    def charge(
        self, claim_id: str, amount: Decimal, policy_ref: str, timeout: float
    ) -> GatewayResponse: ...


class HttpPaymentGateway:
    """Payment gateway reached over HTTP with ``requests``."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.session = session or requests.Session()

    def charge(
        self, claim_id: str, amount: Decimal, policy_ref: str, timeout: float
    ) -> GatewayResponse:
        headers = {"Content-Type": "application/json", "Idempotency-Key": claim_id}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = {"claim_id": claim_id, "amount": str(amount), "policy_ref": policy_ref}
        try:
            resp = self.session.post(
                f"{self.base_url}/charges", headers=headers, json=body, timeout=timeout
            )
        except requests.Timeout as e:
            raise TimeoutError(f"payment gateway timed out after {timeout}s: {e}") from e
        except requests.ConnectionError as e:
            raise ConnectionError(f"payment gateway unreachable: {e}") from e

        try:
            payload = resp.json()
        except ValueError:
            payload = {"text": resp.text[:500]}
        if not isinstance(payload, dict):
            payload = {"data": payload}
        return GatewayResponse(
            status_code=resp.status_code,
            transaction_id=payload.get("transaction_id"),
            body=payload,
        )


ScriptedOutcome = Union[int, BaseException]


class SimulatedPaymentGateway:
    """In-process gateway that replays scripted outcomes.

    Each call pops the next outcome: an HTTP status code or an exception to
    raise. When the script is exhausted, ``default_status`` is returned.
    Thread-safe; records every call in ``calls``.
    """

    def __init__(self, outcomes: Iterable[ScriptedOutcome] = (), default_status: int = 200):
        self._outcomes: deque[ScriptedOutcome] = deque(outcomes)
        self.default_status = default_status
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def charge(
        self, claim_id: str, amount: Decimal, policy_ref: str, timeout: float
    ) -> GatewayResponse:
        with self._lock:
            self.calls.append(
                {"claim_id": claim_id, "amount": amount, "policy_ref": policy_ref, "timeout": timeout}
            )
            outcome = self._outcomes.popleft() if self._outcomes else self.default_status
        if isinstance(outcome, BaseException):
            raise outcome
        transaction_id = f"TXN-{uuid.uuid4().hex[:10].upper()}" if 200 <= outcome < 300 else None
        return GatewayResponse(status_code=outcome, transaction_id=transaction_id)
