"""
Extraction outage breaker.

Only outages count against the service: timeouts and unreachable / overloaded
responses (``ExtractionTimeoutError``, ``ExtractionUnavailableError``). A
rejected request or an unparseable body means the service answered, so it
counts as a success.

- CLOSED → OPEN: ``failure_threshold`` outages within the last ``window_seconds``
- OPEN → HALF_OPEN: ``open_timeout`` after tripping
- HALF_OPEN: at most ``half_open_max_calls`` calls in flight; the first outage re-opens,
  the first answer closes
"""
from __future__ import annotations
import time
from collections import deque
from contextlib import asynccontextmanager
from enum import StrEnum
from typing import AsyncIterator, Callable

from tour_intake.common.exceptions import ExtractionTimeoutError, ExtractionUnavailableError
import structlog

logger = structlog.get_logger()

OUTAGE_ERRORS = (ExtractionTimeoutError, ExtractionUnavailableError)


class CircuitState(StrEnum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


def is_outage(error: BaseException | None) -> bool:
    return isinstance(error, OUTAGE_ERRORS)


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        open_timeout: float = 60.0,
        window_seconds: float = 60.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._threshold = max(failure_threshold, 1)
        self._open_timeout = open_timeout
        self._window = window_seconds
        self._half_open_max = max(half_open_max_calls, 1)
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._outages: deque[float] = deque()
        self._opened_at = 0.0
        self._trial_calls = 0

    @property
    def state(self) -> CircuitState:
        if (self._state == CircuitState.OPEN
                and self._clock() - self._opened_at >= self._open_timeout):
            self._state = CircuitState.HALF_OPEN
            self._trial_calls = 0
            logger.info("extraction_circuit_half_open")
        return self._state

    def recent_outages(self) -> int:
        self._prune(self._clock())
        return len(self._outages)

    def before_call(self) -> None:
        """Fails fast while OPEN, or when the HALF_OPEN trial slots are taken."""
        state = self.state
        if state == CircuitState.OPEN:
            remaining = self._open_timeout - (self._clock() - self._opened_at)
            raise ExtractionUnavailableError(
                f"Extraction circuit open, retry in {max(remaining, 0):.0f}s")
        if state == CircuitState.HALF_OPEN:
            if self._trial_calls >= self._half_open_max:
                raise ExtractionUnavailableError("Extraction circuit half-open, call skipped")
            self._trial_calls += 1

    def after_call(self, error: BaseException | None = None) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._trial_calls = max(self._trial_calls - 1, 0)
        if is_outage(error):
            self._record_outage()
        elif error is not None and not isinstance(error, Exception):
            return  # cancelled: no verdict on the service
        elif self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.CLOSED
            self._outages.clear()
            logger.info("extraction_circuit_closed")

    @asynccontextmanager
    async def guard(self) -> AsyncIterator[None]:
        self.before_call()
        try:
            yield
        except BaseException as e:
            self.after_call(e)
            raise
        self.after_call(None)

    def _record_outage(self) -> None:
        now = self._clock()
        if self._state == CircuitState.HALF_OPEN:
            self._trip(now)
            return
        self._outages.append(now)
        self._prune(now)
        if len(self._outages) >= self._threshold:
            self._trip(now)

    def _prune(self, now: float) -> None:
        while self._outages and now - self._outages[0] >= self._window:
            self._outages.popleft()

    def _trip(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._trial_calls = 0
        logger.error("extraction_circuit_opened", outages=len(self._outages),
                     threshold=self._threshold, open_timeout=self._open_timeout)
