"""
JWT token handling.

Tokens are issued by the portal identity service. This module verifies them
and, for development and tests, can mint equivalent access tokens. HS*
algorithms use the shared secret; RS*/ES* algorithms use the PEM key paths.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import jwt

from portal.config import get_settings

_private_key: str | None = None
_public_key: str | None = None


def _is_symmetric(algorithm: str) -> bool:
    return algorithm.upper().startswith("HS")


def _signing_key() -> str:
    global _private_key  # noqa: PLW0603
    settings = get_settings()
    if _is_symmetric(settings.jwt_algorithm):
        return settings.jwt_secret
    if _private_key is None:
        _private_key = Path(settings.jwt_private_key_path).read_text()
    return _private_key


def _verification_key() -> str:
    global _public_key  # noqa: PLW0603
    settings = get_settings()
    if _is_symmetric(settings.jwt_algorithm):
        return settings.jwt_secret
    if _public_key is None:
        _public_key = Path(settings.jwt_public_key_path).read_text()
    return _public_key


def reset_keys() -> None:
    """Reset cached keys (useful for testing)."""
    global _private_key, _public_key  # noqa: PLW0603
    _private_key = None
    _public_key = None


def create_access_token(user_id: int, role: str = "user") -> str:
    """
    Create a short-lived access token.

    Args:
        user_id: The user's database ID.
        role: The user's portal role, informational only; the role stored on
            the user row is authoritative.

    Returns:
        Encoded JWT string.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_access_token_expire_minutes),
        "iss": settings.jwt_issuer,
        "type": "access",
    }
    return jwt.encode(payload, _signing_key(), algorithm=settings.jwt_algorithm)


def verify_token(token: str, expected_type: str = "access") -> dict[str, Any]:
    """
    Verify and decode a JWT token.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or of the wrong type.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            _verification_key(),
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if payload.get("type") != expected_type:
        msg = f"Expected token type '{expected_type}', got '{payload.get('type')}'"
        raise jwt.InvalidTokenError(msg)

    return payload
