"""Revoked access tokens, persisted across process restarts."""

from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from nevis.core.database import Base


class RevokedToken(Base):
    """An access token revoked before its natural expiry.

    ``key`` is the token's ``jti`` claim, or its last 20 characters for
    tokens issued without one. Rows past ``expires_at`` are ignored on lookup
    and removed by the periodic prune.
    """

    __tablename__ = "revoked_tokens"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    revoked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
