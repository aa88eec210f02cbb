from account_reconciler.security.redaction import (
    REDACTED,
    SENSITIVE_KEYS,
    is_sensitive_key,
    mask_value,
    redact_data,
    redact_mapping,
    redact_text,
)

__all__ = [
    "REDACTED",
    "SENSITIVE_KEYS",
    "is_sensitive_key",
    "mask_value",
    "redact_data",
    "redact_mapping",
    "redact_text",
]
