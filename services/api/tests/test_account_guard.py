from datetime import datetime, timedelta, timezone

import pytest

from conftest import create_user
from parms_api.core.errors import AuthorizationError
from parms_api.models.enums import LockState
from parms_api.services.account_guard import AccountGuard


def test_five_failures_lock_the_account(db):
    guard = AccountGuard()
    user = create_user(db, email="lock@example.com")

    for attempt in range(1, 5):
        status = guard.record_failure(db, user)
        db.commit()
        assert status.state == LockState.WARNED
        assert status.failed_attempts == attempt
        assert not guard.is_locked(user)

    status = guard.record_failure(db, user)
    db.commit()
    assert status.state == LockState.LOCKED
    assert status.failed_attempts == 5
    assert guard.is_locked(user)
    assert status.locked_until is not None
    window = status.locked_until - datetime.now(timezone.utc)
    assert timedelta(hours=1, minutes=59) < window <= timedelta(hours=2)


def test_failures_while_locked_do_not_extend_the_lock(db):
    guard = AccountGuard()
    user = create_user(db, email="extend@example.com")
    for _ in range(5):
        guard.record_failure(db, user)
    db.commit()
    first_locked_until = guard.lock_state(user).locked_until

    status = guard.record_failure(db, user, now=datetime.now(timezone.utc) + timedelta(minutes=5))
    db.commit()
    assert status.locked_until == first_locked_until
    assert status.failed_attempts == 6


def test_failure_after_lock_expiry_restarts_the_count(db):
    guard = AccountGuard()
    user = create_user(db, email="expired@example.com")
    for _ in range(5):
        guard.record_failure(db, user)
    db.commit()

    later = datetime.now(timezone.utc) + timedelta(hours=3)
    assert not guard.is_locked(user, now=later)
    status = guard.record_failure(db, user, now=later)
    db.commit()
    assert status.failed_attempts == 1
    assert status.locked_until is None
    assert status.state == LockState.WARNED


def test_success_clears_counter_and_stamps_last_login(db):
    guard = AccountGuard()
    user = create_user(db, email="success@example.com")
    guard.record_failure(db, user)
    guard.record_failure(db, user)
    guard.record_success(db, user)
    db.commit()

    assert user.failed_login_attempts == 0
    assert user.locked_until is None
    assert user.last_login_at is not None
    assert guard.lock_state(user).state == LockState.CLEAR


def test_locked_and_inactive_accounts_cannot_authenticate(db):
    guard = AccountGuard()
    locked = create_user(db, email="blocked@example.com")
    locked.locked_until = datetime.now(timezone.utc) + timedelta(minutes=10)
    inactive = create_user(db, email="inactive@example.com", is_active=False)
    db.commit()

    with pytest.raises(AuthorizationError) as locked_exc:
        guard.ensure_can_authenticate(locked)
    assert locked_exc.value.code == "ACCOUNT_LOCKED"

    with pytest.raises(AuthorizationError) as inactive_exc:
        guard.ensure_can_authenticate(inactive)
    assert inactive_exc.value.code == "ACCOUNT_INACTIVE"
