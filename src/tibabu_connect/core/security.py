"""Bearer token helpers shared by the HTTP and WebSocket surfaces.

Tokens are issued by the platform's auth service; this module only needs to
agree with it on the signing key, the algorithm and the ``sub`` claim.
"""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from tibabu_connect.core.settings import settings

__all__ = ["InvalidTokenError", "create_access_token", "decode_subject"]


class InvalidTokenError(ValueError):
    """Raised when a bearer token cannot be validated."""


def create_access_token(subject: str, extra_claims: dict[str, str] | None = None) -> str:
    """Create a JWT access token whose subject is the user id."""
    to_encode: dict[str, object] = {"sub": subject}
    if extra_claims:
        to_encode.update(extra_claims)
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode["exp"] = expire
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_subject(token: str) -> str:
    """Return the user id carried by ``token``.

    Raises:
        InvalidTokenError: If the signature, expiry or subject claim is invalid.
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as err:
        raise InvalidTokenError("Could not validate credentials") from err

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise InvalidTokenError("Could not validate credentials")
    return subject
