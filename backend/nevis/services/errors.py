"""Exceptions raised by the authentication services."""


class AuthError(Exception):
    """Base authentication error."""

    pass


class InvalidCredentialsError(AuthError):
    """Invalid email or password."""

    pass


class AccountLockedError(AuthError):
    """Too many failed attempts; the account is temporarily locked."""

    def __init__(self, retry_after_seconds: int, message: str | None = None):
        self.retry_after_seconds = retry_after_seconds
        minutes = max(1, -(-retry_after_seconds // 60))
        super().__init__(
            message or f"Account temporarily locked. Try again in {minutes} minute(s)."
        )


class UserInactiveError(AuthError):
    """User account is deactivated."""

    pass


AccountInactiveError = UserInactiveError


class DuplicateEmailError(AuthError):
    """An account with this email already exists."""

    pass


class InvalidRefreshTokenError(AuthError):
    """Refresh token is missing, invalid, expired or superseded."""

    pass


class WrongPasswordError(AuthError):
    """Current password supplied to a password change is incorrect."""

    pass


class InvalidResetTokenError(AuthError):
    """Password reset token is unknown or expired."""

    pass


class AccountNotFoundError(AuthError):
    """Account referenced by id does not exist."""

    pass


class TokenError(AuthError):
    """JWT token error."""

    pass


class TokenExpiredError(TokenError):
    """JWT token has expired."""

    pass


class InvalidTokenError(TokenError):
    """JWT token is invalid."""

    pass


class TokenRevokedError(TokenError):
    """JWT token has been revoked."""

    pass


class StoreUnavailableError(Exception):
    """The account store or revocation registry could not be reached."""

    pass


class PasswordHashingError(Exception):
    """Hashing a new password failed."""

    pass
