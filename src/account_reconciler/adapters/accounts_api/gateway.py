from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar
from uuid import UUID

import httpx
from pydantic import TypeAdapter

from account_reconciler.adapters.accounts_api.transport import ResilientTransport
from account_reconciler.domain.models import Account, CallOutcome
from account_reconciler.observability import get_telemetry

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ACCOUNT_IDS = TypeAdapter(list[UUID])


def _decode_account(response: httpx.Response) -> Account:
    return Account.model_validate(response.json())


def _decode_account_ids(response: httpx.Response) -> list[UUID]:
    return _ACCOUNT_IDS.validate_python(response.json())


def _decode_nothing(response: httpx.Response) -> None:
    del response
    return None


class AccountGateway:
    """Typed account operations on top of a resilient transport.

    Every method returns a ``CallOutcome``; transport errors, HTTP failures and
    undecodable bodies never escape as exceptions.
    """

    def __init__(self, transport: ResilientTransport, *, prefix: str = "/v1.0") -> None:
        self.transport = transport
        self._collection_path = f"{prefix.rstrip('/')}/accounts"

    def _item_path(self, account_id: UUID) -> str:
        return f"{self._collection_path}/{account_id}"

    async def list_ids(self) -> CallOutcome[list[UUID]]:
        return await self._call("list_ids", "GET", self._collection_path, None, _decode_account_ids)

    async def get(self, account_id: UUID) -> CallOutcome[Account]:
        return await self._call(
            "get",
            "GET",
            self._item_path(account_id),
            account_id,
            _decode_account,
            allow_not_found=True,
        )

    async def create(self, account_id: UUID) -> CallOutcome[Account]:
        return await self._call("create", "POST", self._item_path(account_id), account_id, _decode_account)

    async def update(self, account_id: UUID) -> CallOutcome[Account]:
        return await self._call("update", "PUT", self._item_path(account_id), account_id, _decode_account)

    async def delete(self, account_id: UUID) -> CallOutcome[None]:
        return await self._call("delete", "DELETE", self._item_path(account_id), account_id, _decode_nothing)

    async def close(self) -> None:
        await self.transport.close()

    async def _call(
        self,
        operation: str,
        method: str,
        path: str,
        account_id: UUID | None,
        decode: Callable[[httpx.Response], T],
        *,
        allow_not_found: bool = False,
    ) -> CallOutcome[T]:
        span_attrs = {
            "http.method": method,
            "account_id": str(account_id) if account_id is not None else None,
        }
        with get_telemetry().span(f"accounts_api.{operation}", attrs=span_attrs):
            raw = await self.transport.send(method, path)
        if raw.is_not_found and not allow_not_found:
            # Only a lookup of a single account can legitimately come back empty.
            outcome: CallOutcome[T] = CallOutcome.permanent(
                "resource not found", status_code=404, body=raw.body
            )
        elif not raw.is_success or raw.payload is None:
            outcome = raw.failure_as()  # type: ignore[assignment]
        else:
            response = raw.payload
            try:
                outcome = CallOutcome.success(decode(response), status_code=response.status_code)
            except ValueError as exc:
                outcome = CallOutcome.permanent(
                    f"malformed response body: {type(exc).__name__}",
                    status_code=response.status_code,
                    body=response.text[:300],
                )
        self._log_outcome(operation, account_id, outcome)
        return outcome

    def _log_outcome(self, operation: str, account_id: UUID | None, outcome: CallOutcome[T]) -> None:
        if outcome.is_success:
            return
        fields = {
            "operation": operation,
            "account_id": str(account_id) if account_id is not None else None,
            "outcome": outcome.kind.value,
            "status_code": outcome.status_code,
            "response_body": outcome.body,
            "detail": outcome.detail,
        }
        if outcome.is_not_found:
            logger.info("accounts_api_not_found", extra={"extra": fields})
            return
        logger.warning("accounts_api_call_failed", extra={"extra": fields})
