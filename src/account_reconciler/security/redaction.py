from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

REDACTED = "***REDACTED***"

# Fragments of header, setting or field names whose values are credentials.
SENSITIVE_KEYS = frozenset(
    {
        "security_header",
        "authorization",
        "api_key",
        "password",
        "secret",
        "token",
    }
)

_HEADER_NAMES = ("x-security-header", "authorization", "x-api-key")
_HEADER_LINE = re.compile(
    r"(?im)\b(?P<name>" + "|".join(map(re.escape, _HEADER_NAMES)) + r")(?P<sep>\s*[:=]\s*)"
    r"(?P<scheme>bearer\s+)?(?P<value>[^\s,;]+)"
)
_JSON_FIELD = re.compile(
    r'(?i)(?P<key>"(?:' + "|".join(map(re.escape, _HEADER_NAMES)) + r'|token|password|secret)"\s*:\s*")'
    r'(?P<value>[^"\\]*)"'
)


def is_sensitive_key(key: object) -> bool:
    normalized = str(key).strip().lower().replace("-", "_")
    return any(fragment in normalized for fragment in SENSITIVE_KEYS)


def mask_value(value: str) -> str:
    """Keep just enough of a credential to tell two of them apart."""
    if len(value) < 12:
        return REDACTED
    return f"{REDACTED}{value[-4:]}"


def redact_mapping(values: Mapping[Any, Any]) -> dict[str, Any]:
    redacted: dict[str, Any] = {}
    for key, value in values.items():
        name = str(key)
        if is_sensitive_key(name):
            redacted[name] = REDACTED if value is None else mask_value(str(value))
        else:
            redacted[name] = redact_data(value)
    return redacted


def redact_text(text: str, known_secrets: Iterable[str] = ()) -> str:
    redacted = str(text)
    for secret in known_secrets:
        if secret:
            redacted = redacted.replace(secret, REDACTED)
    redacted = _HEADER_LINE.sub(
        lambda m: f"{m['name']}{m['sep']}{m['scheme'] or ''}{REDACTED}", redacted
    )
    return _JSON_FIELD.sub(lambda m: f'{m["key"]}{REDACTED}"', redacted)


def redact_data(value: Any) -> Any:
    if isinstance(value, Mapping):
        return redact_mapping(value)
    if isinstance(value, list | tuple):
        return type(value)(redact_data(item) for item in value)
    if isinstance(value, str):
        return redact_text(value)
    return value
