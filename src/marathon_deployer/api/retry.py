"""Bounded retry of conflicting submissions and one-shot re-authentication."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Optional, TypeVar

from ..errors import ApiError, DeploymentCancelled, MaxRetriesExceeded

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFLICT = 409


class CancellableSleeper:
    """Sleep that returns early, raising, once `cancel_event` is set.

    With no `sleep` function the wait happens on the event itself, so
    setting it interrupts a sleep already in progress.
    """

    def __init__(
        self,
        cancel_event: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.cancel_event = cancel_event or threading.Event()
        self._sleep = sleep

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def check(self) -> None:
        if self.cancel_event.is_set():
            raise DeploymentCancelled()

    def __call__(self, seconds: float) -> None:
        self.check()
        if seconds <= 0:
            return
        if self._sleep is None:
            if self.cancel_event.wait(seconds):
                raise DeploymentCancelled()
            return
        self._sleep(seconds)
        self.check()


@dataclass
class RetryPolicy:
    """Retry `retry_statuses` responses up to `max_attempts` times in total.

    `backoff`, when given, maps the 1-based attempt that just failed to the
    delay before the next one; otherwise `delay` is used every time.
    """

    max_attempts: int = 3
    delay: float = 5.0
    backoff: Optional[Callable[[int], float]] = None
    retry_statuses: FrozenSet[int] = field(default_factory=lambda: frozenset({CONFLICT}))

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay < 0:
            raise ValueError(f"delay must be >= 0, got {self.delay}")

    def delay_for(self, attempt: int) -> float:
        if self.backoff is not None:
            return self.backoff(attempt)
        return self.delay

    def should_retry(self, error: ApiError) -> bool:
        return error.status in self.retry_statuses

    def run(self, operation: Callable[[], T], sleeper: Optional[Callable[[float], None]] = None) -> T:
        """Call `operation` until it succeeds or the attempts run out.

        Raises:
            MaxRetriesExceeded: every attempt failed with a retryable status
            ApiError: any other API failure, immediately
            DeploymentCancelled: the sleeper was cancelled between attempts
        """
        sleep = sleeper if sleeper is not None else time.sleep
        last_error: Optional[ApiError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except ApiError as exc:
                if not self.should_retry(exc):
                    raise
                last_error = exc
                logger.warning(
                    "Marathon returned HTTP %s (deployment in progress), attempt %d/%d",
                    exc.status,
                    attempt,
                    self.max_attempts,
                )
            if attempt < self.max_attempts:
                sleep(self.delay_for(attempt))

        logger.error("Reached max retries updating Marathon application.")
        raise MaxRetriesExceeded(self.max_attempts, last_error)


def with_reauthentication(
    submit: Callable[[], T], reauthenticate: Optional[Callable[[], bool]]
) -> Callable[[], T]:
    """Wrap `submit` so a 401 triggers one token refresh and one more try.

    `reauthenticate` returns True when a new token is in place. Without it,
    or when it refreshes nothing, the first 401 propagates. A failure of
    the second try propagates as is.
    """

    def attempt() -> T:
        try:
            return submit()
        except ApiError as exc:
            if not exc.unauthorized or reauthenticate is None:
                raise
            logger.info("Marathon returned HTTP 401, requesting a new token")
            if not reauthenticate():
                logger.warning("Token was not refreshed; giving up on HTTP 401")
                raise
            return submit()

    return attempt
