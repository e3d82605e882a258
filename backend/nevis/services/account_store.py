"""Account persistence.

``AccountStore`` is the port the authentication services depend on. Two
implementations are provided: ``SqlAccountStore`` backed by the ``users``
table and ``InMemoryAccountStore`` for tests and single-process demos.

Operations that read-modify-write a counter (failed logins, reset token
consumption, refresh generation) are single atomic store operations so two
concurrent requests cannot lose an update.
"""

import asyncio
import dataclasses
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from nevis.core.clock import Clock, utc_now
from nevis.models.user import User
from nevis.services.errors import DuplicateEmailError, StoreUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class Account:
    """Domain view of a stored account."""

    email: str
    password_hash: str
    username: str = ""
    id: UUID = field(default_factory=uuid.uuid4)
    role: str = "user"
    is_active: bool = True
    is_verified: bool = False
    avatar: str = ""
    bio: str = ""
    failed_login_count: int = 0
    lock_until: datetime | None = None
    reset_token_hash: str | None = None
    reset_token_expires_at: datetime | None = None
    token_version: int = 1
    refresh_generation: int = 0
    login_count: int = 0
    last_login_at: datetime | None = None
    last_login_ip: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.lock_until is not None and self.lock_until > now

    def lock_remaining_seconds(self, now: datetime) -> int:
        """Seconds until the lock expires, rounded up (0 when unlocked)."""
        if not self.is_locked(now):
            return 0
        assert self.lock_until is not None
        remaining = (self.lock_until - now).total_seconds()
        return max(1, math.ceil(remaining))

    def to_public_dict(self) -> dict[str, Any]:
        """Fields safe to return to clients (no hashes, no counters)."""
        return {
            "id": str(self.id),
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "avatar": self.avatar,
            "bio": self.bio,
            "is_verified": self.is_verified,
            "created_at": self.created_at,
            "last_login_at": self.last_login_at,
        }


ACCOUNT_FIELDS = frozenset(f.name for f in dataclasses.fields(Account))
_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AccountStore(Protocol):
    """Async account persistence port."""

    async def find_by_email(self, email: str) -> Account | None: ...

    async def find_by_id(self, account_id: UUID) -> Account | None: ...

    async def create(self, account: Account) -> Account: ...

    async def update(self, account_id: UUID, **fields: Any) -> Account | None: ...

    async def record_failed_login(
        self, account_id: UUID, *, max_failed_attempts: int, lock_until: datetime
    ) -> Account | None: ...

    async def consume_reset_token(self, token_hash: str, now: datetime) -> Account | None: ...

    async def advance_refresh_generation(self, account_id: UUID, expected: int) -> bool: ...


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - ACCOUNT_FIELDS
    if unknown:
        raise ValueError(f"Unknown account fields: {sorted(unknown)}")
    immutable = set(fields) & _IMMUTABLE_FIELDS
    if immutable:
        raise ValueError(f"Immutable account fields: {sorted(immutable)}")


class InMemoryAccountStore:
    """Dict-backed store. Each operation runs under an asyncio lock."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._accounts: dict[UUID, Account] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def __len__(self) -> int:
        return len(self._accounts)

    async def find_by_email(self, email: str) -> Account | None:
        email = normalize_email(email)
        async with self._lock:
            for account in self._accounts.values():
                if account.email == email:
                    return dataclasses.replace(account)
        return None

    async def find_by_id(self, account_id: UUID) -> Account | None:
        async with self._lock:
            account = self._accounts.get(account_id)
            return dataclasses.replace(account) if account else None

    async def create(self, account: Account) -> Account:
        account = dataclasses.replace(account, email=normalize_email(account.email))
        async with self._lock:
            if any(a.email == account.email for a in self._accounts.values()):
                raise DuplicateEmailError("Email already registered")
            now = self._clock()
            account.created_at = account.created_at or now
            account.updated_at = now
            self._accounts[account.id] = account
            return dataclasses.replace(account)

    async def update(self, account_id: UUID, **fields: Any) -> Account | None:
        _check_fields(fields)
        async with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            for name, value in fields.items():
                setattr(account, name, value)
            account.updated_at = self._clock()
            return dataclasses.replace(account)

    async def record_failed_login(
        self, account_id: UUID, *, max_failed_attempts: int, lock_until: datetime
    ) -> Account | None:
        async with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            account.failed_login_count += 1
            if account.failed_login_count >= max_failed_attempts:
                account.lock_until = lock_until
            account.updated_at = self._clock()
            return dataclasses.replace(account)

    async def consume_reset_token(self, token_hash: str, now: datetime) -> Account | None:
        async with self._lock:
            for account in self._accounts.values():
                if (
                    account.reset_token_hash == token_hash
                    and account.reset_token_expires_at is not None
                    and account.reset_token_expires_at > now
                ):
                    account.reset_token_hash = None
                    account.reset_token_expires_at = None
                    account.updated_at = self._clock()
                    return dataclasses.replace(account)
        return None

    async def advance_refresh_generation(self, account_id: UUID, expected: int) -> bool:
        async with self._lock:
            account = self._accounts.get(account_id)
            if account is None or account.refresh_generation != expected:
                return False
            account.refresh_generation = expected + 1
            return True


def _to_account(user: User) -> Account:
    return Account(**{name: getattr(user, name) for name in ACCOUNT_FIELDS})


class SqlAccountStore:
    """Account store backed by the ``users`` table.

    Every write commits immediately so that bookkeeping such as the failed
    login counter survives even when the request later fails.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _fetch_one(self, stmt) -> User | None:
        try:
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception("Account store query failed")
            raise StoreUnavailableError("Account store unavailable") from e

    async def _write_one(self, stmt) -> User | None:
        try:
            result = await self.session.execute(
                stmt.execution_options(populate_existing=True, synchronize_session=False)
            )
            user = result.scalar_one_or_none()
            await self.session.commit()
            return user
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception("Account store update failed")
            raise StoreUnavailableError("Account store unavailable") from e

    async def find_by_email(self, email: str) -> Account | None:
        user = await self._fetch_one(select(User).where(User.email == normalize_email(email)))
        return _to_account(user) if user else None

    async def find_by_id(self, account_id: UUID) -> Account | None:
        user = await self._fetch_one(select(User).where(User.id == account_id))
        return _to_account(user) if user else None

    async def create(self, account: Account) -> Account:
        values = {
            name: getattr(account, name)
            for name in ACCOUNT_FIELDS - {"created_at", "updated_at"}
        }
        values["email"] = normalize_email(account.email)
        user = User(**values)
        self.session.add(user)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise DuplicateEmailError("Email already registered") from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception("Failed to create account")
            raise StoreUnavailableError("Account store unavailable") from e
        await self.session.refresh(user)
        return _to_account(user)

    async def update(self, account_id: UUID, **fields: Any) -> Account | None:
        _check_fields(fields)
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        user = await self._write_one(
            update(User).where(User.id == account_id).values(**fields).returning(User)
        )
        return _to_account(user) if user else None

    async def record_failed_login(
        self, account_id: UUID, *, max_failed_attempts: int, lock_until: datetime
    ) -> Account | None:
        new_count = User.failed_login_count + 1
        user = await self._write_one(
            update(User)
            .where(User.id == account_id)
            .values(
                failed_login_count=new_count,
                lock_until=case(
                    (new_count >= max_failed_attempts, lock_until),
                    else_=User.lock_until,
                ),
            )
            .returning(User)
        )
        return _to_account(user) if user else None

    async def consume_reset_token(self, token_hash: str, now: datetime) -> Account | None:
        user = await self._write_one(
            update(User)
            .where(
                User.reset_token_hash == token_hash,
                User.reset_token_expires_at > now,
            )
            .values(reset_token_hash=None, reset_token_expires_at=None)
            .returning(User)
        )
        return _to_account(user) if user else None

    async def advance_refresh_generation(self, account_id: UUID, expected: int) -> bool:
        user = await self._write_one(
            update(User)
            .where(User.id == account_id, User.refresh_generation == expected)
            .values(refresh_generation=expected + 1)
            .returning(User)
        )
        return user is not None
