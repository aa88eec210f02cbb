from __future__ import annotations

import logging
import threading
from collections.abc import Awaitable, Callable
from enum import StrEnum
from time import monotonic
from typing import TypeVar

from account_reconciler.domain.models import CallOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure breaker shared by every call made under one policy name.

    Closed counts consecutive transient failures and opens at ``failure_threshold``.
    Open rejects calls until ``open_duration_seconds`` has passed, then the next
    caller becomes the single half-open trial. The trial's result closes or
    reopens the breaker; other callers are rejected while it is in flight.
    """

    def __init__(
        self,
        *,
        name: str,
        failure_threshold: int,
        open_duration_seconds: float,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if open_duration_seconds < 0:
            raise ValueError("open_duration_seconds must be >= 0")
        self.name = name
        self.failure_threshold = failure_threshold
        self.open_duration_seconds = open_duration_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    def _maybe_half_open(self) -> None:
        if self._state is not CircuitState.OPEN or self._opened_at is None:
            return
        if self._clock() - self._opened_at >= self.open_duration_seconds:
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False
            self._log_transition(CircuitState.HALF_OPEN)

    def allow_request(self) -> bool:
        with self._lock:
            self._maybe_half_open()
            if self._state is CircuitState.CLOSED:
                return True
            if self._state is CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.OPEN:
                # A call admitted before the breaker opened; only a half-open trial may close it.
                self._consecutive_failures = 0
                return
            previous = self._state
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._opened_at = None
            self._trial_in_flight = False
            if previous is not CircuitState.CLOSED:
                self._log_transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._open()
                return
            if self._state is CircuitState.OPEN:
                return
            self._consecutive_failures += 1
            if self._consecutive_failures >= self.failure_threshold:
                self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._trial_in_flight = False
        self._log_transition(CircuitState.OPEN)

    def _release_trial(self) -> None:
        with self._lock:
            self._trial_in_flight = False

    def _log_transition(self, new_state: CircuitState) -> None:
        event = {
            CircuitState.OPEN: "circuit_breaker_opened",
            CircuitState.HALF_OPEN: "circuit_breaker_half_open",
            CircuitState.CLOSED: "circuit_breaker_closed",
        }[new_state]
        level = logging.WARNING if new_state is CircuitState.OPEN else logging.INFO
        logger.log(
            level,
            event,
            extra={
                "extra": {
                    "policy": self.name,
                    "consecutive_failures": self._consecutive_failures,
                    "open_duration_seconds": self.open_duration_seconds,
                }
            },
        )

    async def call(self, fn: Callable[[], Awaitable[CallOutcome[T]]]) -> CallOutcome[T]:
        if not self.allow_request():
            return CallOutcome.transient(
                f"circuit breaker '{self.name}' is open",
                circuit_open=True,
            )
        try:
            outcome = await fn()
        except BaseException:
            # A cancelled trial must not leave the breaker waiting on it forever.
            self._release_trial()
            raise
        if outcome.is_transient:
            self.record_failure()
        else:
            # NotFound and permanent failures prove the server answered.
            self.record_success()
        return outcome
