from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from account_reconciler.domain.models import CallOutcome

T = TypeVar("T")


@dataclass(frozen=True)
class RetryAttempt:
    attempt: int
    delay_seconds: float
    detail: str | None
    circuit_open: bool = False


@dataclass
class DecorrelatedJitterBackoff:
    """Delay sequence where each wait is drawn relative to the previous one.

    ``next = min(max_delay, uniform(base_delay, previous * 3))``. The stream is
    per instance, so two callers failing together do not wake up together.
    """

    base_delay_seconds: float
    max_delay_seconds: float
    rng: random.Random = field(default_factory=random.Random)
    _previous: float = field(init=False)

    def __post_init__(self) -> None:
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("delay values must be >= 0")
        self._previous = self.base_delay_seconds

    def next_delay(self) -> float:
        upper = max(self.base_delay_seconds, self._previous * 3)
        delay = min(self.max_delay_seconds, self.rng.uniform(self.base_delay_seconds, upper))
        self._previous = delay
        return delay


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 7
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    jitter_seed: int | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("delay values must be >= 0")

    def new_backoff(self) -> DecorrelatedJitterBackoff:
        return DecorrelatedJitterBackoff(
            base_delay_seconds=self.base_delay_seconds,
            max_delay_seconds=self.max_delay_seconds,
            rng=random.Random(self.jitter_seed),
        )

    async def execute(
        self,
        fn: Callable[[], Awaitable[CallOutcome[T]]],
        *,
        on_retry: Callable[[RetryAttempt], None] | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> CallOutcome[T]:
        return await async_retry(
            fn,
            max_attempts=self.max_attempts,
            backoff=self.new_backoff(),
            on_retry=on_retry,
            sleep_fn=sleep_fn,
        )


async def async_retry(  # noqa: UP047
    fn: Callable[[], Awaitable[CallOutcome[T]]],
    *,
    max_attempts: int,
    backoff: DecorrelatedJitterBackoff,
    on_retry: Callable[[RetryAttempt], None] | None = None,
    sleep_fn: Callable[[float], Awaitable[None]] | None = None,
) -> CallOutcome[T]:
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    sleep = sleep_fn or asyncio.sleep

    outcome: CallOutcome[T] | None = None
    for attempt in range(1, max_attempts + 1):
        outcome = await fn()
        if not outcome.is_transient or attempt >= max_attempts:
            return outcome
        delay = backoff.next_delay()
        if on_retry is not None:
            on_retry(
                RetryAttempt(
                    attempt=attempt,
                    delay_seconds=delay,
                    detail=outcome.detail,
                    circuit_open=outcome.circuit_open,
                )
            )
        await sleep(delay)

    raise RuntimeError("retry loop exhausted unexpectedly")
