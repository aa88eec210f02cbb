from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from types import MappingProxyType
from uuid import UUID, uuid4

CONTEXT_FIELDS = ("run_id", "cycle_id", "account_id", "operation")

_EMPTY: Mapping[str, str] = MappingProxyType({})
_LOG_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("log_context", default=_EMPTY)


def get_logging_context() -> dict[str, str]:
    return dict(_LOG_CONTEXT.get())


@contextmanager
def with_logging_context(**fields: str | UUID | None) -> Iterator[None]:
    merged = dict(_LOG_CONTEXT.get())
    for key, value in fields.items():
        if key not in CONTEXT_FIELDS:
            raise KeyError(f"unknown logging context field: {key}")
        if value is not None:
            merged[key] = str(value)
    token = _LOG_CONTEXT.set(MappingProxyType(merged))
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


@contextmanager
def with_cycle_context(cycle_id: str, run_id: str | None = None) -> Iterator[None]:
    with with_logging_context(cycle_id=cycle_id, run_id=run_id):
        yield


@contextmanager
def with_account_context(account_id: UUID | str, operation: str | None = None) -> Iterator[None]:
    with with_logging_context(account_id=account_id, operation=operation):
        yield


def new_correlation_id() -> str:
    return uuid4().hex[:12]
