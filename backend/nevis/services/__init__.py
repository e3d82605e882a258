# Nevis Services
from nevis.services.account_store import (
    Account,
    AccountStore,
    InMemoryAccountStore,
    SqlAccountStore,
)
from nevis.services.auth import AuthService, LoginResult
from nevis.services.lockout import LockoutPolicy, VerificationOutcome
from nevis.services.notifications import LoggingNotifier, Notifier
from nevis.services.passwords import PasswordManager
from nevis.services.revocation import (
    DatabaseRevocationRegistry,
    InMemoryRevocationRegistry,
    RedisRevocationRegistry,
    RevocationRegistry,
    build_revocation_registry,
    revoke_token,
)
from nevis.services.tokens import (
    AccessTokenCheck,
    RefreshTokenCheck,
    TokenIssuer,
    TokenPair,
    TokenVerifier,
)

__all__ = [
    "AccessTokenCheck",
    "Account",
    "AccountStore",
    "AuthService",
    "DatabaseRevocationRegistry",
    "InMemoryAccountStore",
    "InMemoryRevocationRegistry",
    "LockoutPolicy",
    "LoggingNotifier",
    "LoginResult",
    "Notifier",
    "PasswordManager",
    "RedisRevocationRegistry",
    "RefreshTokenCheck",
    "RevocationRegistry",
    "SqlAccountStore",
    "TokenIssuer",
    "TokenPair",
    "TokenVerifier",
    "VerificationOutcome",
    "build_revocation_registry",
    "revoke_token",
]
