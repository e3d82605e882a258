"""Request utility functions for handling common request operations."""

import ipaddress
import logging

from fastapi import Request

logger = logging.getLogger(__name__)

_LOCAL_HOSTS = frozenset({"127.0.0.1", "::1", "localhost"})


def _is_valid_ip(ip_str: str) -> bool:
    """Check if a string is a valid IP address."""
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request, trusted_proxies: set[str] | None = None) -> str | None:
    """Get the client IP address from a request.

    X-Real-IP is only honoured when the direct peer is a trusted proxy
    (loopback, or one of ``trusted_proxies``). X-Forwarded-For is never
    trusted as it can be easily spoofed.

    Args:
        request: The FastAPI request object
        trusted_proxies: Additional proxy addresses allowed to set X-Real-IP

    Returns:
        Client IP address or None if not available
    """
    peer = request.client.host if request.client else None
    trusted = _LOCAL_HOSTS | (trusted_proxies or set())

    if peer in trusted:
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            ip = real_ip.strip()
            if _is_valid_ip(ip):
                return ip
            logger.warning(f"Invalid X-Real-IP: {real_ip}")

    return peer


def get_bearer_token(request: Request) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()  # Remove "Bearer " prefix
        return token or None
    return None
