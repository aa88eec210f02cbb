from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from time import monotonic

import httpx

from account_reconciler.adapters.accounts_api.circuit_breaker import CircuitBreaker
from account_reconciler.adapters.accounts_api.instrumentation import (
    ATTEMPTS,
    CIRCUIT_REJECTIONS,
    LATENCY_MS,
    RETRIES,
    MetricsSink,
)
from account_reconciler.adapters.accounts_api.policies import PolicyRegistry
from account_reconciler.adapters.accounts_api.retry import RetryAttempt, RetryPolicy
from account_reconciler.domain.models import CallOutcome

logger = logging.getLogger(__name__)

_BODY_PREVIEW_CHARS = 300
# 408 is the server telling us the request itself timed out.
_TRANSIENT_CLIENT_STATUSES = frozenset({408})


def classify_response(response: httpx.Response) -> CallOutcome[httpx.Response]:
    status = response.status_code
    if 200 <= status < 300:
        return CallOutcome.success(response, status_code=status)
    body = response.text[:_BODY_PREVIEW_CHARS]
    if status >= 500 or status in _TRANSIENT_CLIENT_STATUSES:
        return CallOutcome.transient(f"server error {status}", status_code=status, body=body)
    if status == 404:
        return CallOutcome.not_found(body=body)
    return CallOutcome.permanent(f"request rejected with {status}", status_code=status, body=body)


def classify_transport_error(exc: httpx.HTTPError) -> CallOutcome[httpx.Response]:
    if isinstance(exc, httpx.TimeoutException):
        return CallOutcome.transient(f"timeout: {type(exc).__name__}")
    if isinstance(exc, httpx.TransportError):
        return CallOutcome.transient(f"transport error: {type(exc).__name__}: {exc}")
    # Undecodable bodies and redirect loops repeat identically on every attempt.
    return CallOutcome.permanent(f"unusable response: {type(exc).__name__}: {exc}")


class ResilientTransport:
    """Send one logical request with retry wrapped around the circuit breaker.

    Every retry attempt asks the breaker first, so an open breaker turns the
    remaining attempts into fast failures that never touch the network.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        retry: RetryPolicy,
        breaker: CircuitBreaker,
        metrics: MetricsSink | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._client = client
        self.retry = retry
        self.breaker = breaker
        self.metrics = metrics or MetricsSink()
        self._sleep_fn = sleep_fn

    @classmethod
    def from_registry(
        cls,
        client: httpx.AsyncClient,
        registry: PolicyRegistry,
        *,
        metrics: MetricsSink | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> ResilientTransport:
        return cls(
            client,
            retry=registry.retry(),
            breaker=registry.circuit_breaker(),
            metrics=metrics,
            sleep_fn=sleep_fn,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, method: str, path: str) -> CallOutcome[httpx.Response]:
        attrs = {"method": method}

        async def _attempt() -> CallOutcome[httpx.Response]:
            self.metrics.inc(ATTEMPTS, attrs=attrs)
            started = monotonic()
            try:
                response = await self._client.request(method, path)
            except httpx.HTTPError as exc:
                return classify_transport_error(exc)
            finally:
                self.metrics.observe_ms(LATENCY_MS, (monotonic() - started) * 1000, attrs=attrs)
            return classify_response(response)

        async def _guarded() -> CallOutcome[httpx.Response]:
            outcome = await self.breaker.call(_attempt)
            if outcome.circuit_open:
                self.metrics.inc(CIRCUIT_REJECTIONS, attrs=attrs)
            return outcome

        def _on_retry(attempt: RetryAttempt) -> None:
            self.metrics.inc(RETRIES, attrs=attrs)
            logger.info(
                "accounts_api_retry_scheduled",
                extra={
                    "extra": {
                        "method": method,
                        "path": path,
                        "attempt": attempt.attempt,
                        "max_attempts": self.retry.max_attempts,
                        "delay_seconds": round(attempt.delay_seconds, 3),
                        "detail": attempt.detail,
                        "circuit_open": attempt.circuit_open,
                    }
                },
            )

        return await self.retry.execute(_guarded, on_retry=_on_retry, sleep_fn=self._sleep_fn)
