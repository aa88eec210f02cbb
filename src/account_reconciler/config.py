from __future__ import annotations

import json
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from account_reconciler.adapters.accounts_api.client import AccountsApiClientConfig
from account_reconciler.adapters.accounts_api.policies import HttpPoliciesConfig
from account_reconciler.observability import METRICS_EXPORTERS, TelemetryConfig


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    accounts_api_base_url: str = Field(
        default="http://localhost:5000", alias="ACCOUNTS_API_BASE_URL"
    )
    accounts_api_prefix: str = Field(default="/v1.0", alias="ACCOUNTS_API_PREFIX")
    accounts_api_headers: Annotated[dict[str, str], NoDecode] = Field(
        default_factory=dict, alias="ACCOUNTS_API_HEADERS"
    )
    accounts_api_timeout_seconds: float = Field(
        default=10.0, alias="ACCOUNTS_API_TIMEOUT_SECONDS"
    )

    http_retry_max_attempts: int = Field(default=7, alias="HTTP_RETRY_MAX_ATTEMPTS")
    http_retry_base_delay_seconds: float = Field(
        default=1.0, alias="HTTP_RETRY_BASE_DELAY_SECONDS"
    )
    http_retry_max_delay_seconds: float = Field(
        default=30.0, alias="HTTP_RETRY_MAX_DELAY_SECONDS"
    )
    circuit_breaker_failure_threshold: int = Field(
        default=7, alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD"
    )
    circuit_breaker_open_seconds: float = Field(
        default=10.0, alias="CIRCUIT_BREAKER_OPEN_SECONDS"
    )

    delete_account_after_updates: int = Field(default=10, alias="DELETE_ACCOUNT_AFTER_UPDATES")
    poll_interval_seconds: float = Field(default=1.0, alias="POLL_INTERVAL_SECONDS")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    observability_enabled: bool = Field(default=False, alias="OBSERVABILITY_ENABLED")
    observability_metrics_exporter: str = Field(
        default="none", alias="OBSERVABILITY_METRICS_EXPORTER"
    )
    observability_otlp_endpoint: str | None = Field(
        default=None, alias="OBSERVABILITY_OTLP_ENDPOINT"
    )
    observability_prometheus_port: int = Field(
        default=9464, alias="OBSERVABILITY_PROMETHEUS_PORT"
    )

    @field_validator("accounts_api_headers", mode="before")
    def parse_headers(cls, value: str | dict[str, str] | None) -> dict[str, str]:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k).strip(): str(v).strip() for k, v in value.items()}
        raw = str(value).strip()
        if not raw:
            return {}
        if raw.startswith("{"):
            parsed = json.loads(raw)
            if not isinstance(parsed, dict):
                raise ValueError("ACCOUNTS_API_HEADERS JSON value must be an object")
            return {str(k).strip(): str(v).strip() for k, v in parsed.items()}

        headers: dict[str, str] = {}
        for item in raw.split(","):
            if not item.strip():
                continue
            key, sep, header_value = item.partition("=")
            if not sep or not key.strip():
                raise ValueError("ACCOUNTS_API_HEADERS entries must look like Name=value")
            headers[key.strip()] = header_value.strip()
        return headers

    @field_validator("accounts_api_prefix")
    def normalize_prefix(cls, value: str) -> str:
        cleaned = value.strip().rstrip("/")
        if cleaned and not cleaned.startswith("/"):
            cleaned = f"/{cleaned}"
        return cleaned

    @field_validator("accounts_api_timeout_seconds", "poll_interval_seconds")
    def validate_positive_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts and intervals must be > 0")
        return value

    @field_validator("http_retry_max_attempts", "circuit_breaker_failure_threshold")
    def validate_at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("attempt and failure counts must be >= 1")
        return value

    @field_validator(
        "http_retry_base_delay_seconds",
        "http_retry_max_delay_seconds",
        "circuit_breaker_open_seconds",
    )
    def validate_non_negative_seconds(cls, value: float) -> float:
        if value < 0:
            raise ValueError("delays must be >= 0")
        return value

    @field_validator("delete_account_after_updates")
    def validate_threshold(cls, value: int) -> int:
        if value < 0:
            raise ValueError("DELETE_ACCOUNT_AFTER_UPDATES must be >= 0")
        return value

    @field_validator("observability_metrics_exporter")
    def validate_metrics_exporter(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in METRICS_EXPORTERS:
            raise ValueError(
                f"OBSERVABILITY_METRICS_EXPORTER must be one of {sorted(METRICS_EXPORTERS)}"
            )
        return normalized

    @field_validator("observability_prometheus_port")
    def validate_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError("OBSERVABILITY_PROMETHEUS_PORT must be a valid TCP port")
        return value

    def http_policies(self) -> HttpPoliciesConfig:
        return HttpPoliciesConfig(
            retry_max_attempts=self.http_retry_max_attempts,
            retry_base_delay_seconds=self.http_retry_base_delay_seconds,
            retry_max_delay_seconds=self.http_retry_max_delay_seconds,
            breaker_failure_threshold=self.circuit_breaker_failure_threshold,
            breaker_open_seconds=self.circuit_breaker_open_seconds,
        )

    def client_config(self) -> AccountsApiClientConfig:
        return AccountsApiClientConfig(
            base_url=self.accounts_api_base_url,
            headers=dict(self.accounts_api_headers),
            timeout_seconds=self.accounts_api_timeout_seconds,
        )

    def telemetry_config(self) -> TelemetryConfig:
        return TelemetryConfig(
            enabled=self.observability_enabled,
            metrics_exporter=self.observability_metrics_exporter,
            otlp_endpoint=self.observability_otlp_endpoint,
            prometheus_port=self.observability_prometheus_port,
        )
