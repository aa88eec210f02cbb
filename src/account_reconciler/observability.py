from __future__ import annotations

import atexit
import logging
import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

METRICS_EXPORTERS = frozenset({"none", "otlp", "prometheus"})
_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_.-]+")


@dataclass(frozen=True)
class TelemetryConfig:
    enabled: bool = False
    service_name: str = "account-reconciler"
    metrics_exporter: str = "none"
    otlp_endpoint: str | None = None
    prometheus_port: int = 9464


def _instrument_name(name: str) -> str:
    # OpenTelemetry instrument names reject label syntax such as "{method=GET}".
    return _UNSAFE_CHARS.sub("_", name).strip("_") or "invalid_metric"


class Telemetry:
    def counter(self, name: str, value: int = 1, *, attrs: dict[str, Any] | None = None) -> None:
        return None

    def histogram(self, name: str, value: float, *, attrs: dict[str, Any] | None = None) -> None:
        return None

    @contextmanager
    def span(self, name: str, *, attrs: dict[str, Any] | None = None) -> Iterator[None]:
        yield

    def shutdown(self) -> None:
        return None


class NoopTelemetry(Telemetry):
    pass


def _metric_readers(config: TelemetryConfig) -> list[Any]:
    if config.metrics_exporter == "otlp":
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader

        kwargs = {"endpoint": config.otlp_endpoint} if config.otlp_endpoint else {}
        return [PeriodicExportingMetricReader(OTLPMetricExporter(**kwargs))]
    if config.metrics_exporter == "prometheus":
        from opentelemetry.exporter.prometheus import PrometheusMetricReader
        from prometheus_client import start_http_server

        start_http_server(config.prometheus_port)
        return [PrometheusMetricReader()]
    return []


class OTelTelemetry(Telemetry):
    """Counters, latency histograms and call spans backed by OpenTelemetry.

    Metrics go wherever ``metrics_exporter`` says; spans are batched to the
    OTLP endpoint (or the exporter's default when none is configured).
    """

    def __init__(self, config: TelemetryConfig) -> None:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        resource = Resource.create({"service.name": config.service_name})
        span_kwargs = {"endpoint": config.otlp_endpoint} if config.otlp_endpoint else {}

        self._tracer_provider = TracerProvider(resource=resource)
        self._tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**span_kwargs)))
        trace.set_tracer_provider(self._tracer_provider)
        self._tracer = self._tracer_provider.get_tracer(config.service_name)

        self._meter_provider = MeterProvider(resource=resource, metric_readers=_metric_readers(config))
        metrics.set_meter_provider(self._meter_provider)
        self._meter = self._meter_provider.get_meter(config.service_name)
        self._instruments: dict[tuple[str, str], Any] = {}
        self._instruments_lock = threading.Lock()

    def _instrument(self, kind: str, name: str) -> Any:
        key = (kind, _instrument_name(name))
        with self._instruments_lock:
            instrument = self._instruments.get(key)
            if instrument is None:
                if kind == "counter":
                    instrument = self._meter.create_counter(key[1])
                else:
                    instrument = self._meter.create_histogram(key[1], unit="ms")
                self._instruments[key] = instrument
            return instrument

    def counter(self, name: str, value: int = 1, *, attrs: dict[str, Any] | None = None) -> None:
        self._instrument("counter", name).add(value, attrs or {})

    def histogram(self, name: str, value: float, *, attrs: dict[str, Any] | None = None) -> None:
        self._instrument("histogram", name).record(value, attrs or {})

    @contextmanager
    def span(self, name: str, *, attrs: dict[str, Any] | None = None) -> Iterator[None]:
        span_attrs = {key: value for key, value in (attrs or {}).items() if value is not None}
        with self._tracer.start_as_current_span(name, attributes=span_attrs):
            yield

    def shutdown(self) -> None:
        for provider in (self._meter_provider, self._tracer_provider):
            provider.force_flush()
            provider.shutdown()


_STATE_LOCK = threading.Lock()
_TELEMETRY: Telemetry = NoopTelemetry()
_CONFIGURED = False


def configure_telemetry(config: TelemetryConfig) -> Telemetry:
    """Install the process-wide telemetry backend; only the first call has effect."""
    global _TELEMETRY, _CONFIGURED
    with _STATE_LOCK:
        if _CONFIGURED:
            return _TELEMETRY
        _CONFIGURED = True
        if config.enabled:
            try:
                _TELEMETRY = OTelTelemetry(config)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "telemetry_setup_failed_falling_back_to_noop",
                    extra={"extra": {"metrics_exporter": config.metrics_exporter}},
                )
                _TELEMETRY = NoopTelemetry()
        return _TELEMETRY


def get_telemetry() -> Telemetry:
    return _TELEMETRY


def shutdown_telemetry() -> None:
    _TELEMETRY.shutdown()


atexit.register(shutdown_telemetry)
