"""Failed-login lockout gate around password verification."""

import logging
from dataclasses import dataclass
from datetime import timedelta

from nevis.core.clock import Clock, utc_now
from nevis.core.config import Settings
from nevis.services.account_store import Account, AccountStore
from nevis.services.passwords import PasswordManager

logger = logging.getLogger(__name__)

MAX_FAILED_ATTEMPTS = 5
LOCK_DURATION = timedelta(minutes=30)


@dataclass(frozen=True)
class VerificationOutcome:
    valid: bool
    locked: bool = False
    retry_after_seconds: int = 0
    account: Account | None = None


class LockoutPolicy:
    """Verify passwords while tracking consecutive failures per account.

    An account whose ``lock_until`` lies in the future is reported as locked
    without touching the hasher. Otherwise the password is always checked; a
    failure increments the counter (locking at the threshold) and a success
    clears any counter or lock left behind.
    """

    def __init__(
        self,
        store: AccountStore,
        passwords: PasswordManager,
        max_failed_attempts: int = MAX_FAILED_ATTEMPTS,
        lock_duration: timedelta = LOCK_DURATION,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.passwords = passwords
        self.max_failed_attempts = max_failed_attempts
        self.lock_duration = lock_duration
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: AccountStore,
        passwords: PasswordManager,
        clock: Clock = utc_now,
    ) -> "LockoutPolicy":
        return cls(
            store,
            passwords,
            max_failed_attempts=settings.lockout_max_failed_attempts,
            lock_duration=timedelta(minutes=settings.lockout_duration_minutes),
            clock=clock,
        )

    async def verify(self, account: Account | None, password: str) -> VerificationOutcome:
        if account is None:
            # Unknown account still pays for a full comparison
            await self.passwords.verify_async(password, None)
            return VerificationOutcome(valid=False)

        now = self.clock()
        if account.is_locked(now):
            return VerificationOutcome(
                valid=False,
                locked=True,
                retry_after_seconds=account.lock_remaining_seconds(now),
                account=account,
            )

        if await self.passwords.verify_async(password, account.password_hash):
            if account.failed_login_count > 0 or account.lock_until is not None:
                cleared = await self.store.update(
                    account.id, failed_login_count=0, lock_until=None
                )
                account = cleared or account
            return VerificationOutcome(valid=True, account=account)

        updated = await self.store.record_failed_login(
            account.id,
            max_failed_attempts=self.max_failed_attempts,
            lock_until=now + self.lock_duration,
        )
        account = updated or account
        if account.is_locked(now):
            logger.warning(
                "Account locked after %d failed attempts: %s",
                account.failed_login_count,
                account.id,
            )
            return VerificationOutcome(
                valid=False,
                locked=True,
                retry_after_seconds=account.lock_remaining_seconds(now),
                account=account,
            )
        return VerificationOutcome(valid=False, account=account)
