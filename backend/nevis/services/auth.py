"""Authentication service: registration, login, token refresh and password flows."""

import dataclasses
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from uuid import UUID

from nevis.core.clock import Clock, utc_now
from nevis.core.config import Settings
from nevis.services.account_store import Account, AccountStore, normalize_email
from nevis.services.errors import (
    AccountInactiveError,
    AccountLockedError,
    AccountNotFoundError,
    DuplicateEmailError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    InvalidResetTokenError,
    InvalidTokenError,
    StoreUnavailableError,
    TokenExpiredError,
    TokenRevokedError,
    UserInactiveError,
    WrongPasswordError,
)
from nevis.services.lockout import LockoutPolicy
from nevis.services.notifications import LoggingNotifier, Notifier, password_reset_link
from nevis.services.passwords import PasswordManager
from nevis.services.revocation import RevocationRegistry, revoke_token
from nevis.services.tokens import TokenIssuer, TokenPair, TokenVerifier

logger = logging.getLogger(__name__)

RESET_TOKEN_BYTES = 32


def hash_reset_token(token: str) -> str:
    """Reset tokens are stored as SHA-256 digests; only the notifier sees plaintext."""
    return hashlib.sha256(token.encode()).hexdigest()


@dataclass(frozen=True)
class LoginResult:
    account: Account
    tokens: TokenPair


class AuthService:
    """Service for authentication operations."""

    def __init__(
        self,
        store: AccountStore,
        registry: RevocationRegistry,
        passwords: PasswordManager,
        settings: Settings,
        *,
        notifier: Notifier | None = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.registry = registry
        self.passwords = passwords
        self.settings = settings
        self.notifier = notifier or LoggingNotifier(include_links=settings.debug)
        self.clock = clock
        self.issuer = TokenIssuer.from_settings(settings, clock=clock)
        self.verifier = TokenVerifier.from_settings(settings, registry, clock=clock)
        self.lockout = LockoutPolicy.from_settings(settings, store, passwords, clock=clock)
        self.access_ttl = timedelta(minutes=settings.jwt_access_token_expire_minutes)
        self.reset_ttl = timedelta(minutes=settings.password_reset_expire_minutes)

    # --- Registration / login ---

    async def register(
        self,
        email: str,
        password: str,
        username: str | None = None,
        avatar: str = "",
        bio: str = "",
    ) -> Account:
        """Create an account. Raises DuplicateEmailError if the email is taken."""
        email = normalize_email(email)
        if await self.store.find_by_email(email) is not None:
            raise DuplicateEmailError("Email already registered")

        password_hash = await self.passwords.hash_async(password)
        account = await self.store.create(
            Account(
                email=email,
                password_hash=password_hash,
                username=(username or email.split("@", 1)[0])[:30],
                avatar=avatar,
                bio=bio,
            )
        )
        logger.info("Registered account %s", account.id)

        try:
            await self.notifier.send_welcome(account)
        except Exception:
            logger.exception("Welcome notification failed for %s", account.id)
        return account

    async def login(self, email: str, password: str, client_ip: str | None = None) -> LoginResult:
        """Verify credentials and issue a token pair.

        Unknown email and wrong password both raise InvalidCredentialsError
        after a full hash comparison, to prevent account enumeration.
        """
        account = await self.store.find_by_email(email)
        outcome = await self.lockout.verify(account, password)

        if outcome.locked:
            raise AccountLockedError(outcome.retry_after_seconds)
        if not outcome.valid or outcome.account is None:
            raise InvalidCredentialsError("Invalid email or password")

        account = outcome.account
        if not account.is_active:
            raise AccountInactiveError("Account is deactivated")

        fields: dict[str, Any] = {
            "login_count": account.login_count + 1,
            "last_login_at": self.clock(),
            "last_login_ip": client_ip,
        }
        if self.passwords.needs_rehash(account.password_hash):
            fields["password_hash"] = await self.passwords.hash_async(password)
            logger.info("Rehashed password for %s with current parameters", account.id)
        account = await self.store.update(account.id, **fields) or account

        logger.info("Login succeeded for %s", account.id)
        return LoginResult(account=account, tokens=self.issuer.issue(account))

    # --- Tokens ---

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a valid refresh token for a new token pair."""
        check = self.verifier.verify_refresh(refresh_token)
        if not check.valid or check.payload is None:
            raise InvalidRefreshTokenError("Invalid or expired refresh token")
        payload = check.payload

        account = await self._account_from_claims(payload, InvalidRefreshTokenError)
        if not account.is_active:
            raise UserInactiveError("User account is deactivated")
        if payload.get("tv") != account.token_version:
            raise InvalidRefreshTokenError("Refresh token has been invalidated")

        if self.settings.refresh_token_rotation:
            generation = payload.get("gen")
            if not isinstance(generation, int) or not await self.store.advance_refresh_generation(
                account.id, generation
            ):
                logger.warning("Superseded refresh token presented for %s", account.id)
                raise InvalidRefreshTokenError("Refresh token has been superseded")
            account = dataclasses.replace(account, refresh_generation=generation + 1)

        return self.issuer.issue(account)

    async def authenticate(self, access_token: str) -> Account:
        """Resolve a bearer token to its account."""
        check = await self.verifier.verify_access(access_token)
        if check.expired:
            raise TokenExpiredError("Token has expired")
        if check.revoked:
            raise TokenRevokedError("Token has been revoked")
        if not check.valid or check.payload is None:
            raise InvalidTokenError("Invalid token")

        account = await self._account_from_claims(check.payload, InvalidTokenError)
        if not account.is_active:
            raise UserInactiveError("User account is deactivated")
        if check.payload.get("tv") != account.token_version:
            raise InvalidTokenError("Token invalidated by password change")
        return account

    async def _account_from_claims(
        self, payload: dict[str, Any], error: type[Exception]
    ) -> Account:
        try:
            account_id = UUID(str(payload.get("sub")))
        except ValueError as e:
            raise error("Token missing user ID") from e
        account = await self.store.find_by_id(account_id)
        if account is None:
            raise error("User not found")
        return account

    async def logout(self, access_token: str | None) -> None:
        """Revoke the access token. Never fails."""
        if not access_token:
            return
        try:
            await revoke_token(
                self.registry, access_token, max_ttl=self.access_ttl, clock=self.clock
            )
        except StoreUnavailableError:
            logger.error("Logout could not record token revocation")

    # --- Passwords ---

    async def change_password(
        self,
        account_id: UUID,
        current_password: str,
        new_password: str,
        access_token: str | None = None,
    ) -> None:
        """Change a password, invalidating every earlier token for the account."""
        account = await self.store.find_by_id(account_id)
        if account is None:
            raise AccountNotFoundError("Account not found")

        outcome = await self.lockout.verify(account, current_password)
        if outcome.locked:
            raise AccountLockedError(outcome.retry_after_seconds)
        if not outcome.valid:
            raise WrongPasswordError("Current password is incorrect")
        account = outcome.account or account

        password_hash = await self.passwords.hash_async(new_password)
        await self.store.update(
            account.id,
            password_hash=password_hash,
            token_version=account.token_version + 1,
        )
        logger.info("Password changed for %s", account.id)

        if access_token:
            try:
                await revoke_token(
                    self.registry, access_token, max_ttl=self.access_ttl, clock=self.clock
                )
            except StoreUnavailableError:
                # token_version already invalidates it
                logger.error("Could not revoke access token after password change")

    async def request_password_reset(self, email: str) -> None:
        """Start a password reset. Behaves identically whether or not the email exists."""
        try:
            account = await self.store.find_by_email(email)
            if account is None:
                logger.info("Password reset requested for unknown email")
                return

            token = secrets.token_hex(RESET_TOKEN_BYTES)
            await self.store.update(
                account.id,
                reset_token_hash=hash_reset_token(token),
                reset_token_expires_at=self.clock() + self.reset_ttl,
            )
        except StoreUnavailableError:
            logger.error("Password reset request could not be stored")
            return

        try:
            await self.notifier.send_password_reset(
                account, password_reset_link(self.settings.site_url, token)
            )
        except Exception:
            logger.exception("Password reset notification failed for %s", account.id)

    async def reset_password(self, token: str, new_password: str) -> None:
        """Set a new password using a reset token. Clears any lockout."""
        password_hash = await self.passwords.hash_async(new_password)
        account = await self.store.consume_reset_token(hash_reset_token(token), self.clock())
        if account is None:
            raise InvalidResetTokenError("Invalid or expired reset token")

        await self.store.update(
            account.id,
            password_hash=password_hash,
            failed_login_count=0,
            lock_until=None,
            token_version=account.token_version + 1,
        )
        logger.info("Password reset completed for %s", account.id)

    # --- Profile ---

    async def get_profile(self, account_id: UUID) -> Account:
        account = await self.store.find_by_id(account_id)
        if account is None:
            raise AccountNotFoundError("Account not found")
        return account

    async def update_profile(
        self,
        account_id: UUID,
        *,
        username: str | None = None,
        avatar: str | None = None,
        bio: str | None = None,
    ) -> Account:
        changes = {
            name: value
            for name, value in (("username", username), ("avatar", avatar), ("bio", bio))
            if value is not None
        }
        if not changes:
            return await self.get_profile(account_id)
        account = await self.store.update(account_id, **changes)
        if account is None:
            raise AccountNotFoundError("Account not found")
        return account
