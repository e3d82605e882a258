"""Outbound account notifications (password reset links, welcome messages)."""

import logging
from typing import Protocol

from nevis.services.account_store import Account

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send_password_reset(self, account: Account, link: str) -> None: ...

    async def send_welcome(self, account: Account) -> None: ...


class LoggingNotifier:
    """Notifier that only logs. Used until a mail transport is configured.

    The reset link itself is never logged outside debug mode since it grants
    a password change.
    """

    def __init__(self, include_links: bool = False):
        self.include_links = include_links

    async def send_password_reset(self, account: Account, link: str) -> None:
        if self.include_links:
            logger.info("Password reset link for %s: %s", account.email, link)
        else:
            logger.info("Password reset requested for %s", account.email)

    async def send_welcome(self, account: Account) -> None:
        logger.info("Welcome notification queued for %s", account.email)


def password_reset_link(site_url: str, token: str) -> str:
    return f"{site_url.rstrip('/')}/reset-password.html?token={token}"
