"""Health tracking for the OpenRouter upstream.

The tracker is owned by whoever builds the client and is passed to it
explicitly. It only observes outcomes and never blocks a call.
"""

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel

from app.core.logging import get_logger

logger = get_logger(__name__)


class HealthState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class HealthSnapshot(BaseModel):
    state: HealthState
    failure_count: int
    is_healthy: bool
    last_checked: Optional[datetime] = None


class ServiceHealth:
    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = HealthState.CLOSED
        self._failure_count = 0
        self._last_failure_at: Optional[float] = None
        self._last_checked: Optional[datetime] = None

    @property
    def state(self) -> HealthState:
        if (
            self._state == HealthState.OPEN
            and self._last_failure_at is not None
            and self._clock() - self._last_failure_at >= self.recovery_timeout
        ):
            self._state = HealthState.HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_checked(self) -> Optional[datetime]:
        return self._last_checked

    def record_success(self) -> None:
        if self._state != HealthState.CLOSED:
            logger.info("OpenRouter recovered, health state CLOSED")
        self._state = HealthState.CLOSED
        self._failure_count = 0
        self._last_checked = datetime.now(timezone.utc)

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_at = self._clock()
        self._last_checked = datetime.now(timezone.utc)

        # A failure while half-open reopens immediately.
        if self._state == HealthState.HALF_OPEN or (
            self._failure_count >= self.failure_threshold
            and self._state != HealthState.OPEN
        ):
            self._state = HealthState.OPEN
            logger.warning(
                f"OpenRouter marked unhealthy after {self._failure_count} failure(s)"
            )

    def snapshot(self) -> HealthSnapshot:
        state = self.state
        return HealthSnapshot(
            state=state,
            failure_count=self._failure_count,
            is_healthy=state == HealthState.CLOSED,
            last_checked=self._last_checked,
        )
