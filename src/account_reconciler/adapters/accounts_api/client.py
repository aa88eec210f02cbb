from __future__ import annotations

from dataclasses import dataclass, field

import httpx

from account_reconciler.domain.models import ConfigurationError


@dataclass(frozen=True)
class AccountsApiClientConfig:
    base_url: str = "http://localhost:5000"
    headers: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 10.0


def build_http_client(
    config: AccountsApiClientConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Build the pooled async client every gateway call goes through."""
    try:
        base_url = httpx.URL(config.base_url)
    except (httpx.InvalidURL, TypeError) as exc:
        raise ConfigurationError(f"invalid accounts API base URL: {config.base_url!r}") from exc
    if not base_url.is_absolute_url or base_url.scheme not in {"http", "https"}:
        raise ConfigurationError(
            f"accounts API base URL must be an absolute http(s) URL, got {config.base_url!r}"
        )
    if config.timeout_seconds <= 0:
        raise ConfigurationError("accounts API timeout must be > 0")

    return httpx.AsyncClient(
        base_url=base_url,
        headers=config.headers,
        timeout=httpx.Timeout(config.timeout_seconds),
        transport=transport,
    )
