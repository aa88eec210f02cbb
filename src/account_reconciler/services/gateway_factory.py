from __future__ import annotations

import httpx

from account_reconciler.adapters.accounts_api.client import build_http_client
from account_reconciler.adapters.accounts_api.gateway import AccountGateway
from account_reconciler.adapters.accounts_api.instrumentation import MetricsSink, TelemetryMetricsSink
from account_reconciler.adapters.accounts_api.policies import (
    PolicyRegistry,
    register_http_policies,
)
from account_reconciler.adapters.accounts_api.transport import ResilientTransport
from account_reconciler.config import Settings
from account_reconciler.services.reconcile_service import ReconciliationWorker


def build_policy_registry(settings: Settings, registry: PolicyRegistry | None = None) -> PolicyRegistry:
    return register_http_policies(registry or PolicyRegistry(), settings.http_policies())


def build_account_gateway(
    settings: Settings,
    registry: PolicyRegistry,
    *,
    metrics: MetricsSink | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> AccountGateway:
    client = build_http_client(settings.client_config(), transport=http_transport)
    transport = ResilientTransport.from_registry(
        client, registry, metrics=metrics if metrics is not None else TelemetryMetricsSink()
    )
    return AccountGateway(transport, prefix=settings.accounts_api_prefix)


def build_worker(settings: Settings, gateway: AccountGateway) -> ReconciliationWorker:
    return ReconciliationWorker(
        gateway,
        lifecycle_threshold=settings.delete_account_after_updates,
        poll_interval_seconds=settings.poll_interval_seconds,
    )
