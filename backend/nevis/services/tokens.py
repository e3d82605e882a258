"""JWT access/refresh token issuance and verification."""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import jwt
from jwt.exceptions import PyJWTError

from nevis.core.clock import Clock, utc_now
from nevis.core.config import Settings
from nevis.services.account_store import Account
from nevis.services.errors import InvalidTokenError, TokenExpiredError

if TYPE_CHECKING:
    from nevis.services.revocation import RevocationRegistry

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
REVOCATION_KEY_FALLBACK_LENGTH = 20
# Issued jti values are 32 hex chars; the registry column holds at most 64
_JTI_PATTERN = re.compile(r"[0-9a-fA-F]{1,64}")
_REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud", "sub"]


def revocation_key(token: str, payload: dict[str, Any] | None = None) -> str:
    """Registry key for a token: its ``jti`` claim, else the token's trailing characters.

    Revocation reads unverified claims, so a ``jti`` that is not a short hex
    string is ignored in favour of the tail.
    """
    jti = (payload or {}).get("jti")
    if isinstance(jti, str) and _JTI_PATTERN.fullmatch(jti):
        return jti
    return token[-REVOCATION_KEY_FALLBACK_LENGTH:]


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    expires_in: int


@dataclass(frozen=True)
class AccessTokenCheck:
    valid: bool
    expired: bool = False
    revoked: bool = False
    payload: dict[str, Any] | None = None


@dataclass(frozen=True)
class RefreshTokenCheck:
    valid: bool
    payload: dict[str, Any] | None = None


class TokenIssuer:
    """Sign access tokens and refresh tokens with separate secrets.

    Issuing is pure: nothing is written to the account store.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        *,
        algorithm: str = "HS256",
        issuer: str = "nevis-backend",
        audience: str = "nevis-client",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Clock = utc_now,
    ):
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> "TokenIssuer":
        return cls(
            settings.jwt_secret.get_secret_value(),
            settings.jwt_refresh_secret.get_secret_value(),
            algorithm=settings.jwt_algorithm,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_ttl=timedelta(minutes=settings.jwt_access_token_expire_minutes),
            refresh_ttl=timedelta(days=settings.jwt_refresh_token_expire_days),
            clock=clock,
        )

    def _encode(
        self, claims: dict[str, Any], secret: str, issued_at: datetime, expires_at: datetime
    ) -> str:
        payload = {
            **claims,
            "jti": secrets.token_hex(16),
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        # PyJWT 2.x returns str; older type stubs may declare bytes
        return str(jwt.encode(payload, secret, algorithm=self.algorithm))

    def create_access_token(self, account: Account, expires_at: datetime | None = None) -> str:
        now = self.clock()
        return self._encode(
            {
                "sub": str(account.id),
                "id": str(account.id),
                "username": account.username,
                "email": account.email,
                "role": account.role,
                "tv": account.token_version,
                "type": ACCESS_TOKEN_TYPE,
            },
            self.access_secret,
            now,
            expires_at or now + self.access_ttl,
        )

    def create_refresh_token(self, account: Account, expires_at: datetime | None = None) -> str:
        # Minimal surface: no profile data in refresh tokens
        now = self.clock()
        return self._encode(
            {
                "sub": str(account.id),
                "id": str(account.id),
                "tv": account.token_version,
                "gen": account.refresh_generation,
                "type": REFRESH_TOKEN_TYPE,
            },
            self.refresh_secret,
            now,
            expires_at or now + self.refresh_ttl,
        )

    def issue(self, account: Account) -> TokenPair:
        now = self.clock()
        access_expires_at = now + self.access_ttl
        refresh_expires_at = now + self.refresh_ttl
        return TokenPair(
            access_token=self.create_access_token(account, access_expires_at),
            refresh_token=self.create_refresh_token(account, refresh_expires_at),
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
            expires_in=int(self.access_ttl.total_seconds()),
        )


class TokenVerifier:
    """Validate tokens against signature, issuer, audience and the injected clock.

    Access tokens are additionally looked up in the revocation registry;
    a revoked token is reported as revoked even though its signature and
    expiry are fine. Refresh tokens are not individually revoked.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        registry: "RevocationRegistry",
        *,
        algorithm: str = "HS256",
        issuer: str = "nevis-backend",
        audience: str = "nevis-client",
        clock: Clock = utc_now,
    ):
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.registry = registry
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.clock = clock

    @classmethod
    def from_settings(
        cls, settings: Settings, registry: "RevocationRegistry", clock: Clock = utc_now
    ) -> "TokenVerifier":
        return cls(
            settings.jwt_secret.get_secret_value(),
            settings.jwt_refresh_secret.get_secret_value(),
            registry,
            algorithm=settings.jwt_algorithm,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            clock=clock,
        )

    def decode(self, token: str, secret: str, expected_type: str) -> dict[str, Any]:
        """Decode and validate a token. Expiry uses the injected clock."""
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": _REQUIRED_CLAIMS,
                },
            )
        except PyJWTError as e:
            raise InvalidTokenError(f"Invalid token: {e}") from e

        exp = payload.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, int | float):
            raise InvalidTokenError("Invalid token: exp must be a number")
        if payload.get("type") != expected_type:
            raise InvalidTokenError(f"Wrong token type, expected {expected_type}")
        if self.clock().timestamp() >= exp:
            raise TokenExpiredError("Token has expired")
        return payload

    async def verify_access(self, token: str) -> AccessTokenCheck:
        try:
            payload = self.decode(token, self.access_secret, ACCESS_TOKEN_TYPE)
        except TokenExpiredError:
            return AccessTokenCheck(valid=False, expired=True)
        except InvalidTokenError as e:
            logger.debug("Access token rejected: %s", e)
            return AccessTokenCheck(valid=False)

        if await self.registry.is_revoked(revocation_key(token, payload)):
            return AccessTokenCheck(valid=False, revoked=True)
        return AccessTokenCheck(valid=True, payload=payload)

    def verify_refresh(self, token: str) -> RefreshTokenCheck:
        try:
            payload = self.decode(token, self.refresh_secret, REFRESH_TOKEN_TYPE)
        except (TokenExpiredError, InvalidTokenError) as e:
            logger.debug("Refresh token rejected: %s", e)
            return RefreshTokenCheck(valid=False)
        return RefreshTokenCheck(valid=True, payload=payload)
