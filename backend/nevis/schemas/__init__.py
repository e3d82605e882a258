# Nevis Pydantic Schemas
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

__all__ = [
    "ChangePasswordRequest",
    "ForgotPasswordRequest",
    "LoginRequest",
    "MessageResponse",
    "ProfileUpdateRequest",
    "RegisterRequest",
    "ResetPasswordRequest",
    "TokenResponse",
    "UserEnvelope",
    "UserResponse",
]
