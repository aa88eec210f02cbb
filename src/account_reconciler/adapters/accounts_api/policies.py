from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from time import monotonic
from typing import Any, TypeVar

from account_reconciler.adapters.accounts_api.circuit_breaker import CircuitBreaker
from account_reconciler.adapters.accounts_api.retry import RetryPolicy

P = TypeVar("P")


class HttpPolicyKey(StrEnum):
    RETRY = "retry"
    CIRCUIT_BREAKER = "circuit-breaker"


@dataclass(frozen=True)
class HttpPoliciesConfig:
    retry_max_attempts: int = 7
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    breaker_failure_threshold: int = 7
    breaker_open_seconds: float = 10.0


class PolicyRegistry:
    """Named policies that outlive any single client or call.

    Registration is idempotent so breaker state survives repeated setup.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._policies: dict[str, Any] = {}

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._policies

    def get_or_add(self, name: str, factory: Callable[[], P]) -> P:
        with self._lock:
            existing = self._policies.get(name)
            if existing is not None:
                return existing
            created = factory()
            self._policies[name] = created
            return created

    def get(self, name: str) -> Any:
        with self._lock:
            try:
                return self._policies[name]
            except KeyError:
                raise KeyError(f"no policy registered under '{name}'") from None

    def retry(self) -> RetryPolicy:
        policy = self.get(HttpPolicyKey.RETRY)
        if not isinstance(policy, RetryPolicy):
            raise TypeError(f"policy '{HttpPolicyKey.RETRY}' is not a RetryPolicy")
        return policy

    def circuit_breaker(self) -> CircuitBreaker:
        policy = self.get(HttpPolicyKey.CIRCUIT_BREAKER)
        if not isinstance(policy, CircuitBreaker):
            raise TypeError(f"policy '{HttpPolicyKey.CIRCUIT_BREAKER}' is not a CircuitBreaker")
        return policy


def register_http_policies(
    registry: PolicyRegistry,
    config: HttpPoliciesConfig | None = None,
    *,
    clock: Callable[[], float] = monotonic,
) -> PolicyRegistry:
    config = config or HttpPoliciesConfig()
    registry.get_or_add(
        HttpPolicyKey.RETRY,
        lambda: RetryPolicy(
            max_attempts=config.retry_max_attempts,
            base_delay_seconds=config.retry_base_delay_seconds,
            max_delay_seconds=config.retry_max_delay_seconds,
        ),
    )
    registry.get_or_add(
        HttpPolicyKey.CIRCUIT_BREAKER,
        lambda: CircuitBreaker(
            name=HttpPolicyKey.CIRCUIT_BREAKER.value,
            failure_threshold=config.breaker_failure_threshold,
            open_duration_seconds=config.breaker_open_seconds,
            clock=clock,
        ),
    )
    return registry
