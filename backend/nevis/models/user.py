"""User account model for authentication."""

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from nevis.models.base import BaseModel


class User(BaseModel):
    """Registered account.

    Emails are stored lower-cased so the unique index is case-insensitive.
    ``token_version`` is bumped on password change/reset to invalidate every
    token issued before it.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role IN ('user', 'admin')", name="ck_users_role"),
        CheckConstraint("failed_login_count >= 0", name="ck_users_failed_login_count"),
    )

    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    username: Mapped[str] = mapped_column(String(30), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Profile
    avatar: Mapped[str] = mapped_column(String(2048), nullable=False, default="")
    bio: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    # Lockout
    failed_login_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lock_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Password reset (SHA-256 of the emailed token)
    reset_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    reset_token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Token invalidation
    token_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    refresh_generation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Tracking
    login_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_login_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.email}>"
