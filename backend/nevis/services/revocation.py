"""Revocation registry for access tokens revoked before their natural expiry.

Entries are ``(key, expires_at)`` pairs. The key is the token's ``jti``
claim (or its trailing characters for tokens without one). An entry whose
expiry has passed is never reported as revoked and may be pruned.

Backends:

* ``InMemoryRevocationRegistry``: per-process dict, suitable for a single
  instance.
* ``DatabaseRevocationRegistry``: the ``revoked_tokens`` table. Survives
  restarts and is shared by every instance on the same database.
* ``RedisRevocationRegistry``: shared key-value store; Redis expires keys
  itself so ``prune`` has nothing to do.
"""

import asyncio
import logging
import threading
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import jwt
from jwt.exceptions import PyJWTError
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nevis.core.clock import Clock, ensure_aware, utc_now
from nevis.core.config import Settings
from nevis.models.revoked_token import RevokedToken
from nevis.services.errors import StoreUnavailableError
from nevis.services.tokens import revocation_key

logger = logging.getLogger(__name__)

REDIS_KEY_PREFIX = "nevis:revoked:"


class RevocationRegistry(Protocol):
    """Capability interface shared by every registry backend."""

    async def revoke(self, key: str, expires_at: datetime) -> None: ...

    async def is_revoked(self, key: str) -> bool: ...

    async def prune(self) -> int: ...


class InMemoryRevocationRegistry:
    """Thread-safe in-process registry."""

    def __init__(self, clock: Clock = utc_now):
        self._entries: dict[str, datetime] = {}
        self._lock = threading.Lock()
        self.clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def revoke(self, key: str, expires_at: datetime) -> None:
        with self._lock:
            current = self._entries.get(key)
            if current is None or expires_at > current:
                self._entries[key] = expires_at

    async def is_revoked(self, key: str) -> bool:
        with self._lock:
            expires_at = self._entries.get(key)
        return expires_at is not None and expires_at > self.clock()

    def _expired_snapshot(self, now: datetime) -> list[str]:
        with self._lock:
            snapshot = list(self._entries.items())
        return [key for key, expires_at in snapshot if expires_at <= now]

    async def prune(self) -> int:
        now = self.clock()
        candidates = self._expired_snapshot(now)

        removed = 0
        with self._lock:
            for key in candidates:
                # A concurrent revoke may have extended the entry since the snapshot
                expires_at = self._entries.get(key)
                if expires_at is not None and expires_at <= now:
                    del self._entries[key]
                    removed += 1
        return removed


class DatabaseRevocationRegistry:
    """Registry persisted in the ``revoked_tokens`` table."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        clock: Clock = utc_now,
    ):
        self.session_maker = session_maker
        self.clock = clock

    async def revoke(self, key: str, expires_at: datetime) -> None:
        stmt = insert(RevokedToken).values(key=key, expires_at=expires_at)
        stmt = stmt.on_conflict_do_update(
            index_elements=[RevokedToken.key],
            set_={"expires_at": stmt.excluded.expires_at},
            where=RevokedToken.expires_at < stmt.excluded.expires_at,
        )
        try:
            async with self.session_maker() as db:
                await db.execute(stmt)
                await db.commit()
        except SQLAlchemyError as e:
            logger.exception("Failed to record revoked token")
            raise StoreUnavailableError("Revocation registry unavailable") from e

    async def is_revoked(self, key: str) -> bool:
        try:
            async with self.session_maker() as db:
                result = await db.execute(
                    select(RevokedToken.expires_at).where(RevokedToken.key == key)
                )
                expires_at = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.exception("Failed to query revoked tokens")
            raise StoreUnavailableError("Revocation registry unavailable") from e
        return expires_at is not None and ensure_aware(expires_at) > self.clock()

    async def prune(self) -> int:
        """Remove expired entries. Returns count removed."""
        try:
            async with self.session_maker() as db:
                result: CursorResult[Any] = await db.execute(  # type: ignore[assignment]
                    delete(RevokedToken).where(RevokedToken.expires_at <= self.clock())
                )
                await db.commit()
        except SQLAlchemyError as e:
            logger.exception("Failed to prune revoked tokens")
            raise StoreUnavailableError("Revocation registry unavailable") from e
        return result.rowcount


class RedisRevocationRegistry:
    """Registry stored in Redis with a per-key TTL."""

    def __init__(self, client: Redis, clock: Clock = utc_now, prefix: str = REDIS_KEY_PREFIX):
        self.client = client
        self.clock = clock
        self.prefix = prefix

    async def revoke(self, key: str, expires_at: datetime) -> None:
        ttl = int((expires_at - self.clock()).total_seconds())
        if ttl <= 0:
            return
        try:
            await self.client.set(f"{self.prefix}{key}", "1", ex=ttl)
        except RedisError as e:
            logger.exception("Failed to record revoked token in Redis")
            raise StoreUnavailableError("Revocation registry unavailable") from e

    async def is_revoked(self, key: str) -> bool:
        try:
            return bool(await self.client.exists(f"{self.prefix}{key}"))
        except RedisError as e:
            logger.exception("Failed to query revoked tokens in Redis")
            raise StoreUnavailableError("Revocation registry unavailable") from e

    async def prune(self) -> int:
        # Redis expires keys on its own
        return 0

    async def close(self) -> None:
        await self.client.aclose()


def build_revocation_registry(
    settings: Settings,
    *,
    clock: Clock = utc_now,
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    redis_client: Redis | None = None,
) -> RevocationRegistry:
    """Create the registry selected by ``REVOCATION_BACKEND``."""
    if settings.revocation_backend == "redis":
        client = redis_client or Redis.from_url(settings.redis_url, decode_responses=True)
        return RedisRevocationRegistry(client, clock=clock)
    if settings.revocation_backend == "database":
        if session_maker is None:
            from nevis.core.database import async_session_maker

            session_maker = async_session_maker
        return DatabaseRevocationRegistry(session_maker, clock=clock)
    return InMemoryRevocationRegistry(clock=clock)


async def revoke_token(
    registry: RevocationRegistry,
    token: str,
    *,
    max_ttl: timedelta,
    clock: Clock = utc_now,
) -> str | None:
    """Revoke a raw access token. Returns the registry key, or None if nothing was recorded.

    The signature is not checked: the caller either already verified the
    token or is logging out with whatever it holds. The recorded expiry is
    capped at ``max_ttl`` from now so forged tokens cannot pin entries.
    """
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except PyJWTError:
        payload = {}

    now = clock()
    ceiling = now + max_ttl
    exp = payload.get("exp")
    if isinstance(exp, int | float) and not isinstance(exp, bool):
        try:
            expires_at = min(datetime.fromtimestamp(exp, tz=UTC), ceiling)
        except (OverflowError, OSError, ValueError):
            expires_at = ceiling
    else:
        expires_at = ceiling

    if expires_at <= now:
        return None

    key = revocation_key(token, payload)
    await registry.revoke(key, expires_at)
    logger.info("Token revoked (key=%s...)", key[:8])
    return key


async def revocation_prune_loop(registry: RevocationRegistry, interval_seconds: float) -> None:
    """Periodically remove expired entries from the revocation registry."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = await registry.prune()
            if removed > 0:
                logger.info(f"Pruned {removed} expired revocation entries")
        except Exception:
            logger.exception("Error pruning revocation registry")
