"""
API key authentication.

The key is compared in constant time; with auth_mode "none" every
request is accepted.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


class AuthSettings:
    """Authentication settings set at app configuration time."""

    mode: str = "api_key"
    api_key: str | None = None


auth_settings = AuthSettings()


def init_auth(mode: str = "api_key", api_key: str | None = None) -> None:
    """Configure authentication."""
    auth_settings.mode = mode
    auth_settings.api_key = api_key
    if mode == "none":
        logger.warning("API authentication disabled")


def verify_api_key(provided: str, expected: str) -> bool:
    """Constant-time key comparison."""
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


async def require_api_key(
    header_key: str | None = Security(api_key_header),
) -> None:
    """
    Dependency enforcing the X-API-Key header.

    Raises:
        HTTPException: 401 if the key is missing or wrong
    """
    if auth_settings.mode == "none":
        return

    expected = auth_settings.api_key
    if header_key is None or expected is None or not verify_api_key(header_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )


async def require_key_auth_mode() -> None:
    """
    Dependency for routes that read or write arbitrary host paths.

    Raises:
        HTTPException: 403 unless auth_mode is "api_key"
    """
    if auth_settings.mode != "api_key":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Whitelist backup and restore require auth_mode api_key",
        )
