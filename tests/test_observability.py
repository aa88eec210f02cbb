from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from uuid import uuid4

import pytest

from account_reconciler import observability
from account_reconciler.adapters.accounts_api.instrumentation import (
    ATTEMPTS,
    InMemoryMetricsSink,
    TelemetryMetricsSink,
)


class RecordingTelemetry(observability.Telemetry):
    def __init__(self) -> None:
        self.counters: list[tuple[str, int, dict[str, Any] | None]] = []
        self.histograms: list[tuple[str, dict[str, Any] | None]] = []
        self.spans: list[tuple[str, dict[str, Any] | None]] = []

    def counter(self, name: str, value: int = 1, *, attrs: dict[str, Any] | None = None) -> None:
        self.counters.append((name, value, attrs))

    def histogram(self, name: str, value: float, *, attrs: dict[str, Any] | None = None) -> None:
        self.histograms.append((name, attrs))

    @contextmanager
    def span(self, name: str, *, attrs: dict[str, Any] | None = None) -> Iterator[None]:
        self.spans.append((name, attrs))
        yield


@pytest.fixture
def recording(monkeypatch) -> RecordingTelemetry:  # type: ignore[no-untyped-def]
    telemetry = RecordingTelemetry()
    monkeypatch.setattr(observability, "_TELEMETRY", telemetry)
    return telemetry


@pytest.fixture
def unconfigured(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setattr(observability, "_TELEMETRY", observability.NoopTelemetry())
    monkeypatch.setattr(observability, "_CONFIGURED", False)


def test_disabled_telemetry_is_noop_and_configured_once(unconfigured) -> None:  # type: ignore[no-untyped-def]
    first = observability.configure_telemetry(observability.TelemetryConfig())
    second = observability.configure_telemetry(
        observability.TelemetryConfig(enabled=True, metrics_exporter="prometheus")
    )

    assert isinstance(first, observability.NoopTelemetry)
    assert second is first
    assert observability.get_telemetry() is first
    with first.span("accounts_api.get"):
        first.counter(ATTEMPTS)


def test_setup_failure_falls_back_to_noop(unconfigured, monkeypatch, caplog) -> None:  # type: ignore[no-untyped-def]
    def _broken(config: observability.TelemetryConfig) -> observability.Telemetry:
        raise RuntimeError("collector unreachable")

    monkeypatch.setattr(observability, "OTelTelemetry", _broken)

    with caplog.at_level(logging.ERROR, logger="account_reconciler.observability"):
        telemetry = observability.configure_telemetry(
            observability.TelemetryConfig(enabled=True, metrics_exporter="otlp")
        )

    assert isinstance(telemetry, observability.NoopTelemetry)
    assert "telemetry_setup_failed_falling_back_to_noop" in caplog.messages


def test_instrument_names_drop_label_syntax() -> None:
    assert observability._instrument_name("accounts_api_attempts{method=GET}") == "accounts_api_attempts_method_GET"
    assert observability._instrument_name("{}") == "invalid_metric"


def test_metrics_sinks_forward_to_telemetry(recording: RecordingTelemetry) -> None:
    memory = InMemoryMetricsSink()

    TelemetryMetricsSink().inc(ATTEMPTS, attrs={"method": "PUT"})
    memory.inc(ATTEMPTS, attrs={"method": "GET"})
    memory.observe_ms("accounts_api_latency_ms", 12.5, attrs={"method": "GET"})

    assert recording.counters == [
        (ATTEMPTS, 1, {"method": "PUT"}),
        (ATTEMPTS, 1, {"method": "GET"}),
    ]
    assert recording.histograms == [("accounts_api_latency_ms", {"method": "GET"})]
    assert memory.total(ATTEMPTS) == 1


def test_gateway_calls_are_wrapped_in_spans(recording, fake_server, make_gateway) -> None:  # type: ignore[no-untyped-def]
    account_id = uuid4()
    harness = make_gateway(fake_server)

    async def _scenario() -> None:
        await harness.gateway.list_ids()
        await harness.gateway.create(account_id)

    asyncio.run(_scenario())

    assert recording.spans == [
        ("accounts_api.list_ids", {"http.method": "GET", "account_id": None}),
        ("accounts_api.create", {"http.method": "POST", "account_id": str(account_id)}),
    ]
