from __future__ import annotations

import logging
import os
import re
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import UUID

import httpx
import pytest

from account_reconciler.adapters.accounts_api.circuit_breaker import CircuitBreaker
from account_reconciler.adapters.accounts_api.gateway import AccountGateway
from account_reconciler.adapters.accounts_api.instrumentation import InMemoryMetricsSink
from account_reconciler.adapters.accounts_api.retry import RetryPolicy
from account_reconciler.adapters.accounts_api.transport import ResilientTransport
from account_reconciler.config import Settings
from account_reconciler.logging_utils import JsonFormatter

BASE_URL = "http://accounts.test"
_ITEM_PATH = re.compile(r"^/v1\.0/accounts/(?P<id>[^/]+)$")
Fault = int | type[httpx.TransportError] | Callable[[httpx.Request], httpx.Response]


@pytest.fixture(autouse=True)
def isolate_settings_from_host_env(monkeypatch: pytest.MonkeyPatch):
    original_env_file = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    settings_env_keys: set[str] = set()
    for field_info in Settings.model_fields.values():
        if isinstance(field_info.alias, str):
            settings_env_keys.add(field_info.alias)

    for key in list(os.environ):
        if key in settings_env_keys or key in {"HTTPX_LOG_LEVEL", "HTTPCORE_LOG_LEVEL"}:
            monkeypatch.delenv(key, raising=False)

    yield

    Settings.model_config["env_file"] = original_env_file


@pytest.fixture(autouse=True)
def restore_root_logging():
    # setup_logging() replaces root handlers; keep that from leaking between tests.
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if isinstance(handler.formatter, JsonFormatter):
            root.removeHandler(handler)
    root.setLevel(level)


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeAccountsServer:
    """In-memory stand-in for the accounts API behind ``httpx.MockTransport``.

    ``faults`` is consumed one entry per request: an int becomes that HTTP
    status, an exception class is raised as a transport error, and any other
    callable builds the response from the request.
    """

    accounts: dict[UUID, int] = field(default_factory=dict)
    faults: deque[Fault] = field(default_factory=deque)
    requests: list[tuple[str, str]] = field(default_factory=list)
    update_increment: int = 1
    delete_takes_effect: bool = True
    on_request: Callable[[httpx.Request], None] | None = None

    def fail_next(self, *faults: Fault) -> None:
        self.faults.extend(faults)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if self.on_request is not None:
            self.on_request(request)
        if self.faults:
            fault = self.faults.popleft()
            if isinstance(fault, int):
                return httpx.Response(fault, text=f"injected {fault}")
            if isinstance(fault, type):
                raise fault("injected fault", request=request)
            return fault(request)

        path = request.url.path
        if path == "/v1.0/accounts":
            if request.method != "GET":
                return httpx.Response(405)
            return httpx.Response(200, json=[str(account_id) for account_id in self.accounts])

        match = _ITEM_PATH.match(path)
        if match is None:
            return httpx.Response(404, json={"error": "no route"})
        try:
            account_id = UUID(match.group("id"))
        except ValueError:
            return httpx.Response(400, json={"error": "invalid id"})

        if request.method == "POST":
            self.accounts.setdefault(account_id, 0)
            return self._account(account_id)
        if account_id not in self.accounts:
            return httpx.Response(404, json={"error": "not found"})
        if request.method == "GET":
            return self._account(account_id)
        if request.method == "PUT":
            self.accounts[account_id] += self.update_increment
            return self._account(account_id)
        if request.method == "DELETE":
            if self.delete_takes_effect:
                del self.accounts[account_id]
            return httpx.Response(204)
        return httpx.Response(405)

    def _account(self, account_id: UUID) -> httpx.Response:
        return httpx.Response(200, json={"id": str(account_id), "counter": self.accounts[account_id]})

    def count(self, method: str, path: str | None = None) -> int:
        return sum(
            1
            for req_method, req_path in self.requests
            if req_method == method and (path is None or req_path == path)
        )


@dataclass
class GatewayHarness:
    gateway: AccountGateway
    breaker: CircuitBreaker
    metrics: InMemoryMetricsSink
    clock: FakeClock
    sleeps: list[float]


@pytest.fixture
def fake_server() -> FakeAccountsServer:
    return FakeAccountsServer()


@pytest.fixture
def make_gateway() -> Callable[..., GatewayHarness]:
    def _make(
        server: FakeAccountsServer,
        *,
        max_attempts: int = 3,
        failure_threshold: int = 5,
        open_seconds: float = 10.0,
        jitter_seed: int = 7,
    ) -> GatewayHarness:
        clock = FakeClock()
        sleeps: list[float] = []

        async def _sleep(delay: float) -> None:
            sleeps.append(delay)

        breaker = CircuitBreaker(
            name="circuit-breaker",
            failure_threshold=failure_threshold,
            open_duration_seconds=open_seconds,
            clock=clock,
        )
        metrics = InMemoryMetricsSink()
        client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(server.handler))
        transport = ResilientTransport(
            client,
            retry=RetryPolicy(
                max_attempts=max_attempts,
                base_delay_seconds=0.1,
                max_delay_seconds=2.0,
                jitter_seed=jitter_seed,
            ),
            breaker=breaker,
            metrics=metrics,
            sleep_fn=_sleep,
        )
        return GatewayHarness(
            gateway=AccountGateway(transport),
            breaker=breaker,
            metrics=metrics,
            clock=clock,
            sleeps=sleeps,
        )

    return _make
