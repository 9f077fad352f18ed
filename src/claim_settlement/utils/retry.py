"""Retry with exponential backoff and cancellable sleeps for settlement calls."""

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

from tenacity import (
    Retrying,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from claim_settlement.errors import ErrorKind, PipelineError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Transient transport errors that are worth retrying
RETRYABLE_EXCEPTIONS = (ConnectionError, TimeoutError, OSError)


class CancellationToken:
    """Cooperative cancellation shared by every task of one batch.

    ``sleep`` is handed to tenacity so backoff waits end early when the token
    is cancelled or its deadline passes.
    """

    def __init__(self, timeout: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + timeout if timeout else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self._event.set()
            return True
        return False

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(self._deadline - self._clock(), 0.0)

    def check(self) -> None:
        """Raise ``PipelineError(cancelled)`` if the token is cancelled."""
        if self.cancelled:
            raise PipelineError.of(
                ErrorKind.CANCELLED,
                "operation cancelled before completion because the batch deadline passed",
                reason_code="cancelled",
                action="Resubmit the claim in a later batch",
            )

    def sleep(self, seconds: float) -> None:
        self.check()
        remaining = self.remaining()
        wait_for = seconds if remaining is None else min(seconds, remaining)
        if self._event.wait(wait_for):
            self.check()
        if remaining is not None and remaining <= seconds:
            # Deadline reached during the wait
            self._event.set()
            self.check()


def settlement_retrying(
    max_retries: int = 3,
    backoff_base: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_EXCEPTIONS,
    cancel: Optional[CancellationToken] = None,
) -> Retrying:
    """Build a tenacity ``Retrying`` for settlement attempts.

    Args:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1).
        backoff_base: First wait in seconds; doubles for each further retry.
        retry_on: Exception types that trigger a retry.
        cancel: Token whose ``sleep`` replaces ``time.sleep`` between attempts.
    """
    kwargs = {}
    if cancel is not None:
        kwargs["sleep"] = cancel.sleep
    return Retrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=backoff_base, exp_base=2, min=0),
        retry=retry_if_exception_type(retry_on),
        reraise=True,
        **kwargs,
    )


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 5.0,
    multiplier: float = 1.0,
):
    """Decorator that retries a function with exponential backoff on transient failures.

    Args:
        max_attempts: Maximum number of attempts (default 3).
        min_wait: Minimum wait between retries in seconds.
        max_wait: Maximum wait between retries in seconds.
        multiplier: Base multiplier for exponential backoff (default 1).
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
            retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
            reraise=True,
        )
        def wrapper(*args, **kwargs) -> T:
            return func(*args, **kwargs)

        return wrapper

    return decorator
