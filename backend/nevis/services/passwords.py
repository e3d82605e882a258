"""Password hashing and verification using Argon2id."""

import asyncio
import logging
import secrets
import threading

from argon2 import PasswordHasher
from argon2.exceptions import HashingError, InvalidHashError, VerificationError

from nevis.core.config import Settings
from nevis.services.errors import PasswordHashingError

logger = logging.getLogger(__name__)


class PasswordManager:
    """Hash and verify passwords with constant effort.

    ``verify`` always performs a full Argon2 comparison. When the stored hash
    is missing (unknown account) or cannot be parsed, the password is checked
    against a reference hash instead and the result is ``False``, so callers
    cannot tell those cases apart by timing.
    """

    def __init__(
        self,
        time_cost: int = 3,
        memory_cost: int = 65536,
        parallelism: int = 4,
    ):
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=32,
            salt_len=16,
        )
        self._reference: str | None = None
        self._reference_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordManager":
        return cls(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
        )

    def _reference_hash(self) -> str:
        # Same parameters as real hashes so the dummy comparison costs the same
        with self._reference_lock:
            if self._reference is None:
                self._reference = self._hasher.hash(secrets.token_urlsafe(32))
            return self._reference

    def hash(self, password: str) -> str:
        """Hash a password. Raises PasswordHashingError on failure."""
        try:
            return self._hasher.hash(password)
        except HashingError as e:
            logger.exception("Password hashing failed")
            raise PasswordHashingError("Failed to hash password") from e

    def verify(self, password: str, password_hash: str | None) -> bool:
        """Return True if the password matches the hash."""
        if not password_hash:
            self._verify_reference(password)
            return False
        try:
            return self._hasher.verify(password_hash, password)
        except InvalidHashError:
            logger.warning("Stored password hash is malformed")
            self._verify_reference(password)
            return False
        except VerificationError:
            # Includes VerifyMismatchError
            return False

    def _verify_reference(self, password: str) -> None:
        try:
            self._hasher.verify(self._reference_hash(), password)
        except VerificationError:
            pass

    def needs_rehash(self, password_hash: str) -> bool:
        """Check whether a hash was produced with outdated cost parameters."""
        try:
            return self._hasher.check_needs_rehash(password_hash)
        except (InvalidHashError, ValueError):
            return False

    async def hash_async(self, password: str) -> str:
        return await asyncio.to_thread(self.hash, password)

    async def verify_async(self, password: str, password_hash: str | None) -> bool:
        return await asyncio.to_thread(self.verify, password, password_hash)
