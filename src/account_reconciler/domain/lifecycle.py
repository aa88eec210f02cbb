from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from account_reconciler.domain.models import Account, CallOutcome


class AccountState(StrEnum):
    ABSENT = "absent"
    BELOW_THRESHOLD = "below_threshold"
    AT_OR_ABOVE_THRESHOLD = "at_or_above_threshold"
    UNAVAILABLE = "unavailable"


class LifecycleAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class AccountSnapshot:
    state: AccountState
    account: Account | None = None

    @property
    def counter(self) -> int | None:
        return self.account.counter if self.account is not None else None


def classify(snapshot: CallOutcome[Account], *, threshold: int) -> AccountSnapshot:
    """Map a freshly fetched account to its lifecycle state.

    Only ``NotFound`` means the account is absent. A failed fetch leaves the
    account ``UNAVAILABLE`` for this cycle.
    """
    if snapshot.is_not_found:
        return AccountSnapshot(state=AccountState.ABSENT)
    if not snapshot.is_success or snapshot.payload is None:
        return AccountSnapshot(state=AccountState.UNAVAILABLE)
    account = snapshot.payload
    if account.counter < threshold:
        return AccountSnapshot(state=AccountState.BELOW_THRESHOLD, account=account)
    return AccountSnapshot(state=AccountState.AT_OR_ABOVE_THRESHOLD, account=account)


_ACTIONS = {
    AccountState.ABSENT: LifecycleAction.CREATE,
    AccountState.BELOW_THRESHOLD: LifecycleAction.UPDATE,
    AccountState.AT_OR_ABOVE_THRESHOLD: LifecycleAction.DELETE,
}


def decide(snapshot: AccountSnapshot) -> LifecycleAction | None:
    return _ACTIONS.get(snapshot.state)


def is_create_confirmed(outcome: CallOutcome[Account]) -> bool:
    return outcome.is_success


def is_update_confirmed(observed: Account, outcome: CallOutcome[Account]) -> bool:
    # HTTP success alone does not prove the increment landed exactly once.
    if not outcome.is_success or outcome.payload is None:
        return False
    return outcome.payload.counter == observed.counter + 1


def is_delete_confirmed(delete_outcome: CallOutcome[None], follow_up: CallOutcome[Account]) -> bool:
    return delete_outcome.is_success and follow_up.is_not_found
