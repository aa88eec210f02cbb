from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class Account(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: UUID
    counter: int = Field(default=0, ge=0)


class OutcomeKind(StrEnum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


@dataclass(frozen=True)
class CallOutcome(Generic[T]):
    """Tagged result of one remote call.

    ``payload`` is only meaningful for ``SUCCESS``. ``status_code`` and ``body``
    are kept when the server answered, so callers can log what came back.
    """

    kind: OutcomeKind
    payload: T | None = None
    detail: str | None = None
    status_code: int | None = None
    body: str | None = None
    circuit_open: bool = False

    @classmethod
    def success(cls, payload: T | None = None, *, status_code: int | None = None) -> CallOutcome[T]:
        return cls(kind=OutcomeKind.SUCCESS, payload=payload, status_code=status_code)

    @classmethod
    def not_found(cls, *, body: str | None = None) -> CallOutcome[T]:
        return cls(kind=OutcomeKind.NOT_FOUND, status_code=404, body=body)

    @classmethod
    def transient(
        cls,
        detail: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
        circuit_open: bool = False,
    ) -> CallOutcome[T]:
        return cls(
            kind=OutcomeKind.TRANSIENT_FAILURE,
            detail=detail,
            status_code=status_code,
            body=body,
            circuit_open=circuit_open,
        )

    @classmethod
    def permanent(
        cls,
        detail: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> CallOutcome[T]:
        return cls(
            kind=OutcomeKind.PERMANENT_FAILURE,
            detail=detail,
            status_code=status_code,
            body=body,
        )

    @property
    def is_success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def is_not_found(self) -> bool:
        return self.kind is OutcomeKind.NOT_FOUND

    @property
    def is_transient(self) -> bool:
        return self.kind is OutcomeKind.TRANSIENT_FAILURE

    def failure_as(self) -> CallOutcome[object]:
        """Re-type a non-success outcome for a caller expecting another payload type."""
        if self.is_success:
            raise ValueError("success outcome carries a payload and cannot be re-typed")
        return CallOutcome(
            kind=self.kind,
            detail=self.detail,
            status_code=self.status_code,
            body=self.body,
            circuit_open=self.circuit_open,
        )


class ConfigurationError(ValueError):
    """Raised when client or policy settings cannot be used."""
