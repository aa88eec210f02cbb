from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from account_reconciler.observability import get_telemetry

ATTEMPTS = "accounts_api_attempts"
RETRIES = "accounts_api_retries"
CIRCUIT_REJECTIONS = "accounts_api_circuit_rejections"
LATENCY_MS = "accounts_api_latency_ms"

Attrs = dict[str, Any] | None


def metric_key(name: str, attrs: Attrs = None) -> str:
    if not attrs:
        return name
    labels = ",".join(f"{key}={attrs[key]}" for key in sorted(attrs))
    return f"{name}{{{labels}}}"


class MetricsSink:
    """Where the gateway reports attempts, retries, rejections and latency. Discards by default."""

    def inc(self, name: str, value: int = 1, *, attrs: Attrs = None) -> None:
        return None

    def observe_ms(self, name: str, value_ms: float, *, attrs: Attrs = None) -> None:
        return None


class TelemetryMetricsSink(MetricsSink):
    def inc(self, name: str, value: int = 1, *, attrs: Attrs = None) -> None:
        get_telemetry().counter(name, value, attrs=attrs)

    def observe_ms(self, name: str, value_ms: float, *, attrs: Attrs = None) -> None:
        get_telemetry().histogram(name, value_ms, attrs=attrs)


@dataclass
class InMemoryMetricsSink(TelemetryMetricsSink):
    """Keeps labelled counters and latency samples, mostly for tests and `health`."""

    counters: Counter[str] = field(default_factory=Counter)
    latencies: dict[str, list[float]] = field(default_factory=dict)

    def inc(self, name: str, value: int = 1, *, attrs: Attrs = None) -> None:
        self.counters[metric_key(name, attrs)] += value
        super().inc(name, value, attrs=attrs)

    def observe_ms(self, name: str, value_ms: float, *, attrs: Attrs = None) -> None:
        self.latencies.setdefault(metric_key(name, attrs), []).append(value_ms)
        super().observe_ms(name, value_ms, attrs=attrs)

    def total(self, name: str) -> int:
        prefix = f"{name}{{"
        return sum(
            count for key, count in self.counters.items() if key == name or key.startswith(prefix)
        )

    def snapshot(self) -> dict[str, int]:
        return dict(sorted(self.counters.items()))
