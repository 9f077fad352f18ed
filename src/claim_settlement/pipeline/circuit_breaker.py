"""Per-endpoint circuit breakers.

A breaker is ``closed`` (calls pass), ``open`` (calls rejected) or
``half_open`` (one trial call at a time). Each breaker has its own lock, so
unrelated endpoints never contend; the registry lock is held only while
creating a breaker.
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Optional

from claim_settlement.config.settings import get_circuit_config

logger = logging.getLogger(__name__)


class CircuitMode(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitState:
    """Snapshot of a breaker's counters."""

    endpoint: str
    mode: CircuitMode
    consecutive_failures: int
    consecutive_successes: int
    last_failure_at: Optional[float]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["mode"] = self.mode.value
        return data


class CircuitBreaker:
    """Failure-tracking gate for one endpoint."""

    def __init__(
        self,
        endpoint: str,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        timeout_window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.endpoint = endpoint
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout_window = timeout_window
        self._clock = clock
        self._lock = threading.Lock()
        self._mode = CircuitMode.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure_at: Optional[float] = None
        self._trial_in_flight = False

    def _maybe_half_open(self) -> None:
        """Open -> half_open once the window since the last failure has elapsed. Lock held."""
        if self._mode != CircuitMode.OPEN or self._last_failure_at is None:
            return
        if self._clock() - self._last_failure_at >= self.timeout_window:
            self._mode = CircuitMode.HALF_OPEN
            self._successes = 0
            self._trial_in_flight = False
            logger.info("Circuit %s half-open: trial call permitted", self.endpoint)

    def is_open(self) -> bool:
        with self._lock:
            self._maybe_half_open()
            return self._mode == CircuitMode.OPEN

    def allow_request(self) -> bool:
        """Whether a call may proceed now. Half-open admits one trial at a time."""
        with self._lock:
            self._maybe_half_open()
            if self._mode == CircuitMode.CLOSED:
                return True
            if self._mode == CircuitMode.OPEN:
                return False
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._mode == CircuitMode.HALF_OPEN:
                self._trial_in_flight = False
                self._successes += 1
                if self._successes >= self.success_threshold:
                    self._mode = CircuitMode.CLOSED
                    self._failures = 0
                    self._successes = 0
                    logger.info("Circuit %s closed after successful trials", self.endpoint)
                return
            self._failures = 0
            self._successes += 1

    def record_failure(self) -> None:
        with self._lock:
            self._last_failure_at = self._clock()
            self._successes = 0
            if self._mode == CircuitMode.HALF_OPEN:
                self._trial_in_flight = False
                self._mode = CircuitMode.OPEN
                logger.warning("Circuit %s reopened: half-open trial failed", self.endpoint)
                return
            self._failures += 1
            if self._mode == CircuitMode.CLOSED and self._failures >= self.failure_threshold:
                self._mode = CircuitMode.OPEN
                logger.warning(
                    "Circuit %s opened after %d consecutive failures",
                    self.endpoint,
                    self._failures,
                )

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return CircuitState(
                endpoint=self.endpoint,
                mode=self._mode,
                consecutive_failures=self._failures,
                consecutive_successes=self._successes,
                last_failure_at=self._last_failure_at,
            )


class CircuitBreakerRegistry:
    """Breakers keyed by endpoint name, created lazily on first use."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        **overrides: Any,
    ):
        self._clock = clock
        self._config = {**get_circuit_config(), **overrides}
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, endpoint: str) -> CircuitBreaker:
        breaker = self._breakers.get(endpoint)
        if breaker is not None:
            return breaker
        with self._lock:
            breaker = self._breakers.get(endpoint)
            if breaker is None:
                breaker = CircuitBreaker(endpoint, clock=self._clock, **self._config)
                self._breakers[endpoint] = breaker
            return breaker

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.endpoint: b.state.to_dict() for b in breakers}
