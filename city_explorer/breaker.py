import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import PersistenceError


T = TypeVar("T")

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Guards an optional dependency (the places cache).

    Closed: every call goes through. After `failure_threshold` consecutive
    failures the breaker opens and calls are skipped. Once `recovery_sec` has
    elapsed a single trial call is let through (half-open); its outcome closes
    or reopens the breaker.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        recovery_sec: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.recovery_sec = recovery_sec
        self._clock = clock
        self._state = CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> str:
        if self._state == OPEN and self._clock() - self._opened_at >= self.recovery_sec:
            return HALF_OPEN
        return self._state

    def allow(self) -> bool:
        state = self.state
        if state == CLOSED:
            return True
        if state == HALF_OPEN and not self._trial_in_flight:
            self._state = HALF_OPEN
            self._trial_in_flight = True
            return True
        return False

    def record_success(self) -> None:
        if self._state != CLOSED:
            logging.info("%s breaker closed; dependency recovered", self.name)
        self._state = CLOSED
        self._failures = 0
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self._failures += 1
        self._trial_in_flight = False
        if self._state == HALF_OPEN or self._failures >= self.failure_threshold:
            if self._state != OPEN:
                logging.warning("%s breaker opened after %d failure(s)", self.name, self._failures)
            self._state = OPEN
            self._opened_at = self._clock()

    async def attempt(self, operation: Callable[[], Awaitable[T]]) -> Optional[T]:
        """Run `operation` unless the breaker is open. Store failures yield None."""
        if not self.allow():
            return None
        try:
            result = await operation()
        except PersistenceError as e:
            logging.warning("%s unavailable: %s", self.name, e)
            self.record_failure()
            return None
        self.record_success()
        return result
