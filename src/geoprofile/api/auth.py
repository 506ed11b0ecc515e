"""
API key authentication.

When a key is configured every request must carry it in the
``X-API-Key`` header. Without a configured key the API is open, which is
only meant for local development.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

logger = logging.getLogger(__name__)


api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


class APIKeyGuard:
    """Holds the configured key and checks presented keys against it."""

    def __init__(self) -> None:
        self._key: str | None = None

    @property
    def enabled(self) -> bool:
        return self._key is not None

    def configure(self, key: str | None) -> None:
        self._key = key or None

    def check(self, presented: str | None) -> bool:
        """Constant-time comparison of the presented key."""
        if self._key is None:
            return True
        if presented is None:
            return False
        return hmac.compare_digest(presented.encode(), self._key.encode())


# Global guard instance
key_guard = APIKeyGuard()


async def require_api_key(
    header_key: str | None = Security(api_key_header),
) -> None:
    """
    FastAPI dependency enforcing the configured API key.

    Raises:
        HTTPException: If a key is configured and the request lacks it
    """
    if key_guard.check(header_key):
        return

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="API key required" if header_key is None else "Invalid API key",
        headers={"WWW-Authenticate": "ApiKey"},
    )


def init_auth(api_key: str | None = None) -> None:
    """
    Initialize authentication.

    Args:
        api_key: Key required on every request (None disables the check)
    """
    key_guard.configure(api_key)
    if key_guard.enabled:
        logger.info("API key authentication enabled")
    else:
        logger.warning("No API key configured, API is unauthenticated")
