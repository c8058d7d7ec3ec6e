"""Polling of the active deployment list until a rollout finishes."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .api.client import MarathonClient
from .config import DEFAULT_POLL_INTERVAL
from .errors import ApiError, DeploymentTimeout
from .utils.logging import get_logger

logger = get_logger(__name__)


class WatchStatus(str, enum.Enum):
    COMPLETE = "complete"
    TIMED_OUT = "timed_out"
    ERROR = "error"


@dataclass
class WatchResult:
    status: WatchStatus
    polls: int
    elapsed: float
    error: Optional[str] = None
    timeout_error: Optional[DeploymentTimeout] = None

    @property
    def complete(self) -> bool:
        return self.status is WatchStatus.COMPLETE


class DeploymentWatcher:
    """Waits for a deployment id to drop out of ``GET /v2/deployments``.

    Each cycle sleeps `poll_interval` first, then fetches the list. A timeout
    and a failed fetch both end the wait without raising; only cancellation
    (raised by `sleeper`) escapes.
    """

    def __init__(
        self,
        client: MarathonClient,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleeper: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.poll_interval = poll_interval
        self._sleep = sleeper if sleeper is not None else time.sleep
        self._clock = clock

    def wait(
        self, deployment_id: str, timeout: float, started_at: Optional[float] = None
    ) -> WatchResult:
        """
        Poll until `deployment_id` is gone or `timeout` seconds have passed.

        Args:
            deployment_id: Id returned by the application update
            timeout: Wait window in seconds
            started_at: Clock reading the window is measured from, defaults to now
        """
        start = self._clock() if started_at is None else started_at
        polls = 0
        logger.info("Waiting up to %gs for deployment %s", timeout, deployment_id)

        while True:
            self._sleep(self.poll_interval)
            polls += 1
            try:
                active = self.client.get_deployments()
            except ApiError as exc:
                logger.warning("Failed to fetch active deployments: %s", exc)
                return WatchResult(WatchStatus.ERROR, polls, self._clock() - start, str(exc))

            elapsed = self._clock() - start
            if not any(item.id == deployment_id for item in active):
                logger.info("Deployment %s finished after %d polls", deployment_id, polls)
                return WatchResult(WatchStatus.COMPLETE, polls, elapsed)

            logger.debug("Deployment %s still active (poll %d)", deployment_id, polls)
            if elapsed >= timeout:
                timeout_error = DeploymentTimeout(deployment_id, timeout)
                logger.warning("%s", timeout_error)
                return WatchResult(
                    WatchStatus.TIMED_OUT, polls, elapsed, timeout_error=timeout_error
                )
