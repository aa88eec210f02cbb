from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol
from uuid import UUID

from account_reconciler.domain.lifecycle import (
    LifecycleAction,
    classify,
    decide,
    is_create_confirmed,
    is_delete_confirmed,
    is_update_confirmed,
)
from account_reconciler.domain.models import Account, CallOutcome
from account_reconciler.logging_context import (
    new_correlation_id,
    with_account_context,
    with_cycle_context,
)

logger = logging.getLogger(__name__)


class AccountsPort(Protocol):
    async def list_ids(self) -> CallOutcome[list[UUID]]: ...

    async def get(self, account_id: UUID) -> CallOutcome[Account]: ...

    async def create(self, account_id: UUID) -> CallOutcome[Account]: ...

    async def update(self, account_id: UUID) -> CallOutcome[Account]: ...

    async def delete(self, account_id: UUID) -> CallOutcome[None]: ...


class ReconcileOutcome(StrEnum):
    CREATED = "created"
    NOT_CREATED = "not_created"
    UPDATED = "updated"
    NOT_UPDATED = "not_updated"
    DELETED = "deleted"
    NOT_DELETED = "not_deleted"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def confirmed(self) -> bool:
        return self in {
            ReconcileOutcome.CREATED,
            ReconcileOutcome.UPDATED,
            ReconcileOutcome.DELETED,
        }


@dataclass(frozen=True)
class AccountResult:
    account_id: UUID
    outcome: ReconcileOutcome
    action: LifecycleAction | None = None
    counter_before: int | None = None
    counter_after: int | None = None


@dataclass(frozen=True)
class CycleResult:
    cycle_id: str
    listed: bool
    results: list[AccountResult] = field(default_factory=list)

    @property
    def confirmed(self) -> int:
        return sum(1 for result in self.results if result.outcome.confirmed)

    def diagnostics(self) -> dict[str, int]:
        counts = Counter(result.outcome.value for result in self.results)
        return {outcome.value: counts.get(outcome.value, 0) for outcome in ReconcileOutcome}


class ReconciliationWorker:
    """Poll the accounts API and drive every account through its lifecycle.

    Each cycle lists ids once and handles them one at a time, in server order:
    absent accounts are created, accounts below the threshold are updated and
    the rest are deleted. Every action is checked against a fresh observation
    before it is logged as done. Nothing is cached between cycles.
    """

    def __init__(
        self,
        gateway: AccountsPort,
        *,
        lifecycle_threshold: int = 10,
        poll_interval_seconds: float = 1.0,
        run_id: str | None = None,
    ) -> None:
        if lifecycle_threshold < 0:
            raise ValueError("lifecycle_threshold must be >= 0")
        if poll_interval_seconds < 0:
            raise ValueError("poll_interval_seconds must be >= 0")
        self.gateway = gateway
        self.lifecycle_threshold = lifecycle_threshold
        self.poll_interval_seconds = poll_interval_seconds
        self.run_id = run_id or new_correlation_id()

    async def run(
        self,
        stop_event: asyncio.Event | None = None,
        *,
        max_cycles: int | None = None,
    ) -> int:
        if max_cycles is not None and max_cycles < 1:
            raise ValueError("max_cycles must be >= 1")
        stop = stop_event or asyncio.Event()
        cycles = 0
        reason = "stop_requested"
        logger.info(
            "worker_started",
            extra={
                "extra": {
                    "run_id": self.run_id,
                    "lifecycle_threshold": self.lifecycle_threshold,
                    "poll_interval_seconds": self.poll_interval_seconds,
                    "max_cycles": max_cycles,
                }
            },
        )
        try:
            while not stop.is_set():
                result = await self._run_cycle_until_stopped(stop)
                if result is None:
                    break
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    reason = "max_cycles_reached"
                    break
                if await self._sleep_until_stopped(stop, self.poll_interval_seconds):
                    break
        except asyncio.CancelledError:
            reason = "cancelled"
            raise
        finally:
            logger.info(
                "worker_stopped",
                extra={"extra": {"run_id": self.run_id, "cycles": cycles, "reason": reason}},
            )
        return cycles

    async def _run_cycle_until_stopped(self, stop: asyncio.Event) -> CycleResult | None:
        cycle_task = asyncio.create_task(self.run_cycle())
        stop_task = asyncio.create_task(stop.wait())
        try:
            await asyncio.wait({cycle_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_task.cancel()
            if not cycle_task.done():
                # Abort in-flight calls and backoff sleeps instead of waiting them out.
                cycle_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await cycle_task
        if cycle_task.cancelled():
            return None
        error = cycle_task.exception()
        if error is not None:
            logger.error(
                "reconcile_cycle_failed",
                exc_info=error,
                extra={"extra": {"run_id": self.run_id}},
            )
            return CycleResult(cycle_id="", listed=False)
        return cycle_task.result()

    @staticmethod
    async def _sleep_until_stopped(stop: asyncio.Event, seconds: float) -> bool:
        try:
            await asyncio.wait_for(stop.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    async def run_cycle(self) -> CycleResult:
        cycle_id = new_correlation_id()
        with with_cycle_context(cycle_id, run_id=self.run_id):
            listed = await self.gateway.list_ids()
            if not listed.is_success:
                logger.warning(
                    "reconcile_cycle_skipped",
                    extra={
                        "extra": {
                            "reason": listed.kind.value,
                            "status_code": listed.status_code,
                            "detail": listed.detail,
                        }
                    },
                )
                return CycleResult(cycle_id=cycle_id, listed=False)

            results = [await self._process_safely(account_id) for account_id in listed.payload or []]
            cycle = CycleResult(cycle_id=cycle_id, listed=True, results=results)
            logger.info(
                "reconcile_cycle_completed",
                extra={
                    "extra": {
                        "accounts": len(results),
                        "confirmed": cycle.confirmed,
                        **cycle.diagnostics(),
                    }
                },
            )
            return cycle

    async def _process_safely(self, account_id: UUID) -> AccountResult:
        try:
            return await self.process_account(account_id)
        except Exception:  # noqa: BLE001
            logger.exception(
                "account_processing_failed",
                extra={"extra": {"account_id": str(account_id)}},
            )
            return AccountResult(account_id=account_id, outcome=ReconcileOutcome.FAILED)

    async def process_account(self, account_id: UUID) -> AccountResult:
        with with_account_context(account_id):
            fetched = await self.gateway.get(account_id)
            snapshot = classify(fetched, threshold=self.lifecycle_threshold)
            action = decide(snapshot)
            if action is LifecycleAction.CREATE:
                return await self._follow_create(account_id)
            if action is LifecycleAction.UPDATE and snapshot.account is not None:
                return await self._follow_update(account_id, snapshot.account)
            if action is LifecycleAction.DELETE and snapshot.account is not None:
                return await self._follow_delete(account_id, snapshot.account)

            logger.warning(
                "account_skipped",
                extra={
                    "extra": {
                        "account_id": str(account_id),
                        "state": snapshot.state.value,
                        "reason": fetched.kind.value,
                    }
                },
            )
            return AccountResult(account_id=account_id, outcome=ReconcileOutcome.SKIPPED)

    async def _follow_create(self, account_id: UUID) -> AccountResult:
        with with_account_context(account_id, operation=LifecycleAction.CREATE.value):
            created = await self.gateway.create(account_id)
            if is_create_confirmed(created) and created.payload is not None:
                self._log_confirmed(
                    ReconcileOutcome.CREATED, account_id, counter=created.payload.counter
                )
                return AccountResult(
                    account_id=account_id,
                    outcome=ReconcileOutcome.CREATED,
                    action=LifecycleAction.CREATE,
                    counter_after=created.payload.counter,
                )
            self._log_unconfirmed(ReconcileOutcome.NOT_CREATED, account_id, reason=created.kind.value)
            return AccountResult(
                account_id=account_id,
                outcome=ReconcileOutcome.NOT_CREATED,
                action=LifecycleAction.CREATE,
            )

    async def _follow_update(self, account_id: UUID, observed: Account) -> AccountResult:
        with with_account_context(account_id, operation=LifecycleAction.UPDATE.value):
            updated = await self.gateway.update(account_id)
            counter_after = updated.payload.counter if updated.payload is not None else None
            if is_update_confirmed(observed, updated):
                self._log_confirmed(ReconcileOutcome.UPDATED, account_id, counter=counter_after)
                outcome = ReconcileOutcome.UPDATED
            else:
                reason = "counter_mismatch" if updated.is_success else updated.kind.value
                self._log_unconfirmed(
                    ReconcileOutcome.NOT_UPDATED,
                    account_id,
                    reason=reason,
                    counter_before=observed.counter,
                    counter_after=counter_after,
                )
                outcome = ReconcileOutcome.NOT_UPDATED
            return AccountResult(
                account_id=account_id,
                outcome=outcome,
                action=LifecycleAction.UPDATE,
                counter_before=observed.counter,
                counter_after=counter_after,
            )

    async def _follow_delete(self, account_id: UUID, observed: Account) -> AccountResult:
        with with_account_context(account_id, operation=LifecycleAction.DELETE.value):
            deleted = await self.gateway.delete(account_id)
            follow_up = await self.gateway.get(account_id)
            counter_after = follow_up.payload.counter if follow_up.payload is not None else None
            if is_delete_confirmed(deleted, follow_up):
                self._log_confirmed(
                    ReconcileOutcome.DELETED, account_id, counter_before=observed.counter
                )
                outcome = ReconcileOutcome.DELETED
            else:
                if not deleted.is_success:
                    reason = deleted.kind.value
                elif follow_up.is_success:
                    reason = "still_present"
                else:
                    reason = f"verification_{follow_up.kind.value}"
                self._log_unconfirmed(
                    ReconcileOutcome.NOT_DELETED,
                    account_id,
                    reason=reason,
                    counter_before=observed.counter,
                    counter_after=counter_after,
                )
                outcome = ReconcileOutcome.NOT_DELETED
            return AccountResult(
                account_id=account_id,
                outcome=outcome,
                action=LifecycleAction.DELETE,
                counter_before=observed.counter,
                counter_after=counter_after,
            )

    def _log_confirmed(self, outcome: ReconcileOutcome, account_id: UUID, **fields: object) -> None:
        logger.info(
            f"account_{outcome.value}",
            extra={"extra": {"account_id": str(account_id), **fields}},
        )

    def _log_unconfirmed(
        self, outcome: ReconcileOutcome, account_id: UUID, *, reason: str, **fields: object
    ) -> None:
        logger.warning(
            f"account_{outcome.value}",
            extra={"extra": {"account_id": str(account_id), "reason": reason, **fields}},
        )
