"""Caller identity from identity-provider access tokens."""
from dataclasses import dataclass
from typing import Optional

import jwt

from app.config import Settings


@dataclass(frozen=True)
class CurrentUser:
    """Stable identity of the caller."""

    id: str
    email: Optional[str] = None


def verify_access_token(token: str, settings: Settings) -> CurrentUser:
    """
    Decode and verify a bearer access token.

    Raises:
        jwt.PyJWTError: Signature, expiry or audience check failed, or the
            token has no subject
    """
    options = {"require": ["sub"]}
    if settings.AUTH_JWT_AUDIENCE is None:
        options["verify_aud"] = False
    claims = jwt.decode(
        token,
        settings.AUTH_JWT_SECRET.get_secret_value(),
        algorithms=[settings.AUTH_JWT_ALGORITHM],
        audience=settings.AUTH_JWT_AUDIENCE,
        options=options,
    )
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise jwt.InvalidTokenError("Token subject is missing")
    return CurrentUser(id=subject, email=claims.get("email"))
