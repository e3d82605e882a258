"""FastAPI dependencies shared by the API routers."""

from functools import lru_cache

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from nevis.core import get_db
from nevis.core.clock import Clock, utc_now
from nevis.core.config import Settings
from nevis.core.config import get_settings as _get_settings
from nevis.core.request_utils import get_bearer_token
from nevis.services.account_store import Account, AccountStore, SqlAccountStore
from nevis.services.auth import AuthService
from nevis.services.errors import (
    InvalidTokenError,
    StoreUnavailableError,
    TokenExpiredError,
    TokenRevokedError,
    UserInactiveError,
)
from nevis.services.notifications import LoggingNotifier, Notifier
from nevis.services.passwords import PasswordManager
from nevis.services.revocation import RevocationRegistry


def get_settings() -> Settings:
    return _get_settings()


def get_clock() -> Clock:
    return utc_now


@lru_cache
def _password_manager(time_cost: int, memory_cost: int, parallelism: int) -> PasswordManager:
    return PasswordManager(time_cost, memory_cost, parallelism)


def get_password_manager(settings: Settings = Depends(get_settings)) -> PasswordManager:
    """One hasher per parameter set so the reference hash is computed once."""
    return _password_manager(
        settings.argon2_time_cost, settings.argon2_memory_cost, settings.argon2_parallelism
    )


def get_account_store(db: AsyncSession = Depends(get_db)) -> AccountStore:
    return SqlAccountStore(db)


def get_revocation_registry(request: Request) -> RevocationRegistry:
    return request.app.state.revocation_registry


def get_notifier(settings: Settings = Depends(get_settings)) -> Notifier:
    return LoggingNotifier(include_links=settings.debug)


def get_auth_service(
    store: AccountStore = Depends(get_account_store),
    registry: RevocationRegistry = Depends(get_revocation_registry),
    passwords: PasswordManager = Depends(get_password_manager),
    settings: Settings = Depends(get_settings),
    notifier: Notifier = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
) -> AuthService:
    """Dependency to get auth service."""
    return AuthService(store, registry, passwords, settings, notifier=notifier, clock=clock)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_account(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> Account:
    """Dependency to get the current authenticated account from the bearer token.

    The raw token is kept on ``request.state.access_token`` so handlers that
    revoke it (logout, password change) do not parse the header again.
    """
    token = get_bearer_token(request)
    if token is None:
        raise _unauthorized("Missing or invalid authorization header")

    try:
        account = await auth_service.authenticate(token)
    except TokenExpiredError as e:
        raise _unauthorized("Token has expired") from e
    except TokenRevokedError as e:
        raise _unauthorized("Token has been revoked") from e
    except (InvalidTokenError, UserInactiveError) as e:
        raise _unauthorized(str(e)) from e
    except StoreUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable",
        ) from e

    request.state.access_token = token
    return account


async def require_admin(current_account: Account = Depends(get_current_account)) -> Account:
    """Dependency that additionally requires the ``admin`` role."""
    if current_account.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_account
