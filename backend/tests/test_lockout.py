"""Tests for the failed-login lockout policy."""

from datetime import timedelta

import pytest
import pytest_asyncio

from nevis.services.account_store import Account
from nevis.services.lockout import LockoutPolicy

PASSWORD = "Passw0rd!"


class SpyPasswords:
    """Delegates to a real PasswordManager and records verify calls."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = 0

    async def verify_async(self, password, password_hash):
        self.calls += 1
        return await self.inner.verify_async(password, password_hash)


@pytest.fixture
def spy(passwords):
    return SpyPasswords(passwords)


@pytest.fixture
def policy(account_store, spy, clock):
    return LockoutPolicy(account_store, spy, clock=clock)


@pytest_asyncio.fixture
async def account(account_store, passwords):
    return await account_store.create(
        Account(email="bob@x.com", password_hash=passwords.hash(PASSWORD), username="bob")
    )


async def _fail(policy, account_store, account_id, times):
    outcome = None
    for _ in range(times):
        current = await account_store.find_by_id(account_id)
        outcome = await policy.verify(current, "wrong")
    return outcome


@pytest.mark.asyncio
async def test_correct_password(policy, account):
    outcome = await policy.verify(account, PASSWORD)
    assert outcome.valid is True
    assert outcome.locked is False


@pytest.mark.asyncio
async def test_fourth_failure_does_not_lock(policy, account_store, account):
    outcome = await _fail(policy, account_store, account.id, 4)

    assert outcome.valid is False
    assert outcome.locked is False
    stored = await account_store.find_by_id(account.id)
    assert stored.failed_login_count == 4
    assert stored.lock_until is None


@pytest.mark.asyncio
async def test_fifth_failure_locks_for_thirty_minutes(policy, account_store, account, clock):
    await _fail(policy, account_store, account.id, 4)
    outcome = await _fail(policy, account_store, account.id, 1)

    assert outcome.locked is True
    assert outcome.retry_after_seconds == 30 * 60
    stored = await account_store.find_by_id(account.id)
    assert stored.failed_login_count == 5
    assert stored.lock_until == clock() + timedelta(minutes=30)


@pytest.mark.asyncio
async def test_locked_account_skips_hash_and_counter(policy, account_store, account, spy):
    await _fail(policy, account_store, account.id, 5)
    calls_before = spy.calls

    locked = await account_store.find_by_id(account.id)
    outcome = await policy.verify(locked, PASSWORD)

    assert outcome.locked is True
    assert outcome.valid is False
    assert spy.calls == calls_before
    stored = await account_store.find_by_id(account.id)
    assert stored.failed_login_count == 5


@pytest.mark.asyncio
async def test_retry_after_rounds_up(policy, account_store, account, clock):
    await _fail(policy, account_store, account.id, 5)
    clock.advance(minutes=29, seconds=59, milliseconds=500)

    locked = await account_store.find_by_id(account.id)
    outcome = await policy.verify(locked, PASSWORD)

    assert outcome.locked is True
    assert outcome.retry_after_seconds == 1


@pytest.mark.asyncio
async def test_success_after_lock_expiry_clears_state(policy, account_store, account, clock):
    await _fail(policy, account_store, account.id, 5)
    clock.advance(minutes=31)

    expired = await account_store.find_by_id(account.id)
    outcome = await policy.verify(expired, PASSWORD)

    assert outcome.valid is True
    stored = await account_store.find_by_id(account.id)
    assert stored.failed_login_count == 0
    assert stored.lock_until is None


@pytest.mark.asyncio
async def test_failure_after_lock_expiry_locks_again(policy, account_store, account, clock):
    await _fail(policy, account_store, account.id, 5)
    clock.advance(minutes=31)

    outcome = await _fail(policy, account_store, account.id, 1)

    assert outcome.locked is True
    stored = await account_store.find_by_id(account.id)
    assert stored.lock_until == clock() + timedelta(minutes=30)


@pytest.mark.asyncio
async def test_success_resets_partial_counter(policy, account_store, account):
    await _fail(policy, account_store, account.id, 3)

    current = await account_store.find_by_id(account.id)
    outcome = await policy.verify(current, PASSWORD)

    assert outcome.valid is True
    assert outcome.account.failed_login_count == 0


@pytest.mark.asyncio
async def test_unknown_account_still_hashes(policy, spy):
    outcome = await policy.verify(None, PASSWORD)

    assert outcome.valid is False
    assert outcome.locked is False
    assert spy.calls == 1


@pytest.mark.asyncio
async def test_configurable_threshold(account_store, spy, clock, account):
    policy = LockoutPolicy(
        account_store, spy, max_failed_attempts=2, lock_duration=timedelta(minutes=5), clock=clock
    )
    outcome = await _fail(policy, account_store, account.id, 2)

    assert outcome.locked is True
    assert outcome.retry_after_seconds == 300
