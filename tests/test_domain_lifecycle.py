from __future__ import annotations

from uuid import uuid4

import pytest

from account_reconciler.domain.lifecycle import (
    AccountState,
    LifecycleAction,
    classify,
    decide,
    is_create_confirmed,
    is_delete_confirmed,
    is_update_confirmed,
)
from account_reconciler.domain.models import Account, CallOutcome, OutcomeKind

THRESHOLD = 10


def _found(counter: int) -> CallOutcome[Account]:
    return CallOutcome.success(Account(id=uuid4(), counter=counter), status_code=200)


def test_absent_account_is_always_created() -> None:
    snapshot = classify(CallOutcome.not_found(), threshold=THRESHOLD)

    assert snapshot.state is AccountState.ABSENT
    assert decide(snapshot) is LifecycleAction.CREATE


@pytest.mark.parametrize("counter", [0, 1, 5, 9])
def test_counter_below_threshold_is_updated(counter: int) -> None:
    snapshot = classify(_found(counter), threshold=THRESHOLD)

    assert snapshot.state is AccountState.BELOW_THRESHOLD
    assert snapshot.counter == counter
    assert decide(snapshot) is LifecycleAction.UPDATE


@pytest.mark.parametrize("counter", [10, 11, 250])
def test_counter_at_or_above_threshold_is_deleted(counter: int) -> None:
    snapshot = classify(_found(counter), threshold=THRESHOLD)

    assert snapshot.state is AccountState.AT_OR_ABOVE_THRESHOLD
    assert decide(snapshot) is LifecycleAction.DELETE


@pytest.mark.parametrize(
    "outcome",
    [
        CallOutcome.transient("timeout"),
        CallOutcome.transient("circuit open", circuit_open=True),
        CallOutcome.permanent("rejected", status_code=401),
    ],
)
def test_failed_fetch_takes_no_action(outcome: CallOutcome[Account]) -> None:
    snapshot = classify(outcome, threshold=THRESHOLD)

    assert snapshot.state is AccountState.UNAVAILABLE
    assert decide(snapshot) is None


def test_zero_threshold_deletes_fresh_accounts() -> None:
    assert decide(classify(_found(0), threshold=0)) is LifecycleAction.DELETE


def test_create_confirmed_only_on_success() -> None:
    assert is_create_confirmed(_found(0)) is True
    assert is_create_confirmed(CallOutcome.transient("server error 503", status_code=503)) is False
    assert is_create_confirmed(CallOutcome.permanent("rejected", status_code=400)) is False


@pytest.mark.parametrize("observed", [0, 3, 9])
def test_update_confirmed_only_when_counter_moves_by_one(observed: int) -> None:
    account = Account(id=uuid4(), counter=observed)

    def _returned(counter: int) -> CallOutcome[Account]:
        return CallOutcome.success(Account(id=account.id, counter=counter))

    assert is_update_confirmed(account, _returned(observed + 1)) is True
    assert is_update_confirmed(account, _returned(observed)) is False
    assert is_update_confirmed(account, _returned(observed + 2)) is False
    assert is_update_confirmed(account, CallOutcome.transient("timeout")) is False


def test_delete_confirmed_only_when_follow_up_is_not_found() -> None:
    deleted: CallOutcome[None] = CallOutcome.success(None, status_code=204)

    assert is_delete_confirmed(deleted, CallOutcome.not_found()) is True
    assert is_delete_confirmed(deleted, _found(10)) is False
    assert is_delete_confirmed(deleted, _found(11)) is False
    # A lower counter is not proof of deletion.
    assert is_delete_confirmed(deleted, _found(0)) is False
    assert is_delete_confirmed(deleted, CallOutcome.transient("timeout")) is False
    assert is_delete_confirmed(CallOutcome.permanent("gone", status_code=404), CallOutcome.not_found()) is False


def test_failure_as_keeps_failure_details_and_rejects_success() -> None:
    failure: CallOutcome[Account] = CallOutcome.transient(
        "server error 502", status_code=502, body="bad gateway"
    )

    retyped = failure.failure_as()

    assert retyped.kind is OutcomeKind.TRANSIENT_FAILURE
    assert retyped.status_code == 502
    assert retyped.body == "bad gateway"
    with pytest.raises(ValueError):
        _found(1).failure_as()


def test_account_rejects_negative_counter() -> None:
    with pytest.raises(ValueError):
        Account(id=uuid4(), counter=-1)
