from .circuit_breaker import CircuitBreaker, CircuitState
from .client import AccountsApiClientConfig, build_http_client
from .gateway import AccountGateway
from .instrumentation import InMemoryMetricsSink, MetricsSink, TelemetryMetricsSink
from .policies import HttpPoliciesConfig, HttpPolicyKey, PolicyRegistry, register_http_policies
from .retry import DecorrelatedJitterBackoff, RetryAttempt, RetryPolicy, async_retry
from .transport import ResilientTransport, classify_response, classify_transport_error

__all__ = [
    "AccountGateway",
    "AccountsApiClientConfig",
    "CircuitBreaker",
    "CircuitState",
    "DecorrelatedJitterBackoff",
    "HttpPoliciesConfig",
    "HttpPolicyKey",
    "InMemoryMetricsSink",
    "MetricsSink",
    "PolicyRegistry",
    "ResilientTransport",
    "RetryAttempt",
    "RetryPolicy",
    "TelemetryMetricsSink",
    "async_retry",
    "build_http_client",
    "classify_response",
    "classify_transport_error",
    "register_http_policies",
]
