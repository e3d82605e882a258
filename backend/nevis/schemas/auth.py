"""Pydantic schemas for authentication API."""

import re
from datetime import datetime
from typing import Annotated

from pydantic import (
    AfterValidator,
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
USERNAME_PATTERN = r"^[a-zA-Z0-9_\- ]+$"


def _validate_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Please provide a valid email address")
    return value


def _validate_password_strength(value: str) -> str:
    if not (
        any(c.islower() for c in value)
        and any(c.isupper() for c in value)
        and any(c.isdigit() for c in value)
    ):
        raise ValueError("Password must contain uppercase, lowercase and a number")
    return value


_HTTP_URL = TypeAdapter(AnyHttpUrl)


def _validate_avatar(value: str) -> str:
    # Empty string clears the avatar
    if value == "":
        return value
    try:
        _HTTP_URL.validate_python(value)
    except ValidationError as e:
        raise ValueError("Avatar must be an http(s) URL") from e
    return value


Email = Annotated[str, Field(max_length=320), AfterValidator(_validate_email)]
NewPassword = Annotated[
    str,
    Field(min_length=8, max_length=128, description="Password (minimum 8 characters)"),
    AfterValidator(_validate_password_strength),
]
Username = Annotated[
    str,
    Field(
        min_length=2,
        max_length=30,
        pattern=USERNAME_PATTERN,
        description="Username (2-30 chars: letters, numbers, spaces, - and _)",
    ),
]
AvatarUrl = Annotated[str, Field(max_length=2048), AfterValidator(_validate_avatar)]


class RegisterRequest(BaseModel):
    """Request for account registration."""

    username: Username
    email: Email
    password: NewPassword

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v


class LoginRequest(BaseModel):
    """Request for login."""

    email: Email
    password: str = Field(..., min_length=1, max_length=128)


class ForgotPasswordRequest(BaseModel):
    email: Email


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)
    password: NewPassword


class ChangePasswordRequest(BaseModel):
    """Request for password change."""

    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: NewPassword


class ProfileUpdateRequest(BaseModel):
    """Partial profile update. Omitted fields are left unchanged."""

    username: Username | None = None
    avatar: AvatarUrl | None = None
    bio: str | None = Field(None, max_length=200)

    @field_validator("username", "avatar", "bio", mode="before")
    @classmethod
    def strip_strings(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v


class MessageResponse(BaseModel):
    """Generic message response."""

    success: bool = True
    message: str


class UserResponse(BaseModel):
    """Public account fields."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    email: str
    role: str
    avatar: str
    bio: str
    is_verified: bool
    created_at: datetime | None
    last_login_at: datetime | None


class UserEnvelope(BaseModel):
    success: bool = True
    message: str | None = None
    user: UserResponse


class TokenResponse(BaseModel):
    """Access token in the body; the refresh token travels as a cookie."""

    success: bool = True
    message: str | None = None
    token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Access token expiry in seconds")
    user: UserResponse | None = None
