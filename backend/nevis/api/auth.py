"""Authentication API endpoints (/api/auth)."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from nevis.api.deps import (
    get_auth_service,
    get_current_account,
    get_settings,
    require_admin,
)
from nevis.core.config import Settings
from nevis.core.request_utils import get_bearer_token, get_client_ip
from nevis.schemas.auth import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    ProfileUpdateRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    UserEnvelope,
    UserResponse,
)
from nevis.services.account_store import Account
from nevis.services.auth import AuthService
from nevis.services.errors import (
    AccountInactiveError,
    AccountLockedError,
    AccountNotFoundError,
    DuplicateEmailError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    InvalidResetTokenError,
    WrongPasswordError,
)
from nevis.services.tokens import TokenPair

logger = logging.getLogger(__name__)

REFRESH_COOKIE_NAME = "refreshToken"
RESET_REQUESTED_MESSAGE = "If that email is registered, a reset link has been sent."

router = APIRouter(prefix="/auth", tags=["auth"])


def _set_refresh_cookie(response: Response, tokens: TokenPair, settings: Settings) -> None:
    response.set_cookie(
        REFRESH_COOKIE_NAME,
        tokens.refresh_token,
        max_age=settings.refresh_token_max_age,
        path="/",
        httponly=True,
        samesite="strict",
        secure=settings.is_production,
    )


def _clear_refresh_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        REFRESH_COOKIE_NAME,
        path="/",
        httponly=True,
        samesite="strict",
        secure=settings.is_production,
    )


def _locked(e: AccountLockedError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_423_LOCKED,
        detail=str(e),
        headers={"Retry-After": str(e.retry_after_seconds)},
    )


def _public(account: Account) -> UserResponse:
    return UserResponse(**account.to_public_dict())


@router.post(
    "/register",
    response_model=UserEnvelope,
    status_code=status.HTTP_201_CREATED,
)
async def register(
    request: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> UserEnvelope:
    """Create an account. Returns 409 Conflict if the email is already registered."""
    try:
        account = await auth_service.register(
            email=request.email,
            password=request.password,
            username=request.username,
        )
    except DuplicateEmailError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return UserEnvelope(message="Account created successfully", user=_public(account))


@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    http_request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> TokenResponse:
    """Authenticate and get JWT tokens.

    The access token is returned in the body; the refresh token is set as an
    HttpOnly cookie. Locked accounts get 423 with a Retry-After header.
    """
    client_ip = get_client_ip(http_request, settings.trusted_proxy_ip_set)

    try:
        result = await auth_service.login(
            email=request.email,
            password=request.password,
            client_ip=client_ip,
        )
    except AccountLockedError as e:
        logger.warning("Login attempt on locked account from %s", client_ip)
        raise _locked(e) from e
    except InvalidCredentialsError as e:
        logger.warning("Failed login attempt from %s", client_ip)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e
    except AccountInactiveError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e)) from e

    _set_refresh_cookie(response, result.tokens, settings)
    return TokenResponse(
        message="Login successful",
        token=result.tokens.access_token,
        expires_in=result.tokens.expires_in,
        user=_public(result.account),
    )


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    http_request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> TokenResponse | JSONResponse:
    """Exchange the refresh cookie for a new access token (and a new cookie)."""
    refresh_token = http_request.cookies.get(REFRESH_COOKIE_NAME)
    if not refresh_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No refresh token",
        )

    try:
        tokens = await auth_service.refresh(refresh_token)
    except (InvalidRefreshTokenError, AccountInactiveError) as e:
        # A dead refresh cookie is dropped so the client stops sending it
        error = JSONResponse({"detail": str(e)}, status_code=status.HTTP_401_UNAUTHORIZED)
        _clear_refresh_cookie(error, settings)
        return error

    _set_refresh_cookie(response, tokens, settings)
    return TokenResponse(token=tokens.access_token, expires_in=tokens.expires_in)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    http_request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> MessageResponse:
    """Revoke the bearer token (if any) and clear the refresh cookie. Always succeeds."""
    await auth_service.logout(get_bearer_token(http_request))
    _clear_refresh_cookie(response, settings)
    return MessageResponse(message="Logged out successfully")


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    request: ForgotPasswordRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Send a reset link. The response never reveals whether the email exists."""
    await auth_service.request_password_reset(request.email)
    return MessageResponse(message=RESET_REQUESTED_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    request: ResetPasswordRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    try:
        await auth_service.reset_password(request.token, request.password)
    except InvalidResetTokenError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return MessageResponse(message="Password reset successfully. Please log in.")


@router.get("/profile", response_model=UserEnvelope)
async def get_profile(
    current_account: Account = Depends(get_current_account),
) -> UserEnvelope:
    return UserEnvelope(user=_public(current_account))


@router.patch("/profile", response_model=UserEnvelope)
async def update_profile(
    request: ProfileUpdateRequest,
    current_account: Account = Depends(get_current_account),
    auth_service: AuthService = Depends(get_auth_service),
) -> UserEnvelope:
    try:
        account = await auth_service.update_profile(
            current_account.id,
            username=request.username,
            avatar=request.avatar,
            bio=request.bio,
        )
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return UserEnvelope(message="Profile updated", user=_public(account))


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    request: ChangePasswordRequest,
    http_request: Request,
    response: Response,
    current_account: Account = Depends(get_current_account),
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> MessageResponse:
    """Change the password and sign out: the current token is revoked and the cookie cleared."""
    try:
        await auth_service.change_password(
            current_account.id,
            request.current_password,
            request.new_password,
            access_token=getattr(http_request.state, "access_token", None),
        )
    except WrongPasswordError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except AccountLockedError as e:
        raise _locked(e) from e
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    _clear_refresh_cookie(response, settings)
    return MessageResponse(message="Password changed successfully. Please log in again.")


@router.get("/accounts/{account_id}", response_model=UserEnvelope)
async def get_account(
    account_id: UUID,
    _admin: Account = Depends(require_admin),
    auth_service: AuthService = Depends(get_auth_service),
) -> UserEnvelope:
    """Look up any account's public profile. Admin only."""
    try:
        account = await auth_service.get_profile(account_id)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return UserEnvelope(user=_public(account))
