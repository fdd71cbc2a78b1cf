"""Failure-rate circuit breaker for a remote dependency.

  closed    -> open       window full and failure rate above threshold
  open      -> half_open  first call after the recovery timeout
  half_open -> closed     the single probe succeeded (window cleared)
  half_open -> open       the single probe failed

While half_open only one probe is in flight; concurrent callers are
rejected without being attempted. State lives for the lifetime of the
process and is shared by every run that uses the guarded client.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Literal, TypeVar

import structlog

from listing_review.core.errors import CircuitOpenError

logger = structlog.get_logger()

T = TypeVar("T")

CircuitState = Literal["closed", "open", "half_open"]

DEFAULT_FAILURE_THRESHOLD = 0.5
DEFAULT_WINDOW_SIZE = 10
DEFAULT_RECOVERY_TIMEOUT_SECONDS = 30.0


class CircuitBreaker:
    """Sliding-window breaker around an async callable."""

    def __init__(
        self,
        name: str = "default",
        *,
        failure_threshold: float = DEFAULT_FAILURE_THRESHOLD,
        window_size: int = DEFAULT_WINDOW_SIZE,
        recovery_timeout_seconds: float = DEFAULT_RECOVERY_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.window_size = max(1, window_size)
        self.recovery_timeout_seconds = recovery_timeout_seconds
        self._clock = clock

        self._state: CircuitState = "closed"
        self._results: deque[bool] = deque(maxlen=self.window_size)
        self._last_failure_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_rate(self) -> float:
        if not self._results:
            return 0.0
        return self._results.count(False) / len(self._results)

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` unless the circuit is open; record the outcome."""
        if self._state == "open":
            if self._clock() - self._last_failure_at >= self.recovery_timeout_seconds:
                self._state = "half_open"
                self._probe_in_flight = False
                logger.info("Circuit half-open, probing", circuit=self.name)
            else:
                raise CircuitOpenError(f"Circuit breaker '{self.name}' is open")

        if self._state == "half_open":
            if self._probe_in_flight:
                raise CircuitOpenError(f"Circuit breaker '{self.name}' is open")
            self._probe_in_flight = True

        try:
            result = await fn()
        except Exception:
            self._record_failure()
            raise
        except BaseException:
            self._probe_in_flight = False
            raise

        self._record_success()
        return result

    # ------------------------------------------------------------------
    # Outcome bookkeeping
    # ------------------------------------------------------------------

    def _record_success(self) -> None:
        self._probe_in_flight = False
        self._results.append(True)

        if self._state == "half_open":
            self._state = "closed"
            self._results.clear()
            self._last_failure_at = 0.0
            logger.info("Circuit closed", circuit=self.name)

    def _record_failure(self) -> None:
        self._probe_in_flight = False
        self._results.append(False)
        self._last_failure_at = self._clock()

        if self._state == "half_open":
            self._state = "open"
            logger.warning("Circuit probe failed, reopening", circuit=self.name)
            return

        if (
            len(self._results) >= self.window_size
            and self.failure_rate > self.failure_threshold
        ):
            self._state = "open"
            logger.warning(
                "Circuit opened",
                circuit=self.name,
                failure_rate=round(self.failure_rate, 2),
                window=len(self._results),
            )
