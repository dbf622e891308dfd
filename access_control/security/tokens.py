"""Verification of session tokens issued by the external auth provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import jwt

from ..config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Identity:
    """Authenticated caller as asserted by a verified session token."""

    identity_id: str
    email: str | None = None


class IdentityProvider(Protocol):
    def resolve_identity(self, token: str | None) -> Identity | None: ...


def decode_session_token(token: str, *, secret: str, audience: str | None) -> dict[str, Any]:
    """Decode and verify a session JWT returning its payload.

    Parameters
    ----------
    token:
        Encoded HS256 JWT issued by the auth provider.
    secret:
        Shared signing secret of the auth provider project.
    audience:
        Expected ``aud`` claim, ``None`` to skip the audience check.

    Raises
    ------
    jwt.PyJWTError
        Propagated when the token is malformed, expired or signed with another key.
    """

    options = {"require": ["sub", "exp"], "verify_aud": audience is not None}
    return jwt.decode(
        token,
        secret,
        algorithms=["HS256"],
        audience=audience,
        options=options,
    )


class JwtIdentityProvider:
    """Resolve identities by verifying provider-signed JWTs locally."""

    def __init__(self, secret: str, audience: str | None = "authenticated") -> None:
        self._secret = secret
        self._audience = audience

    @classmethod
    def from_settings(cls) -> "JwtIdentityProvider":
        settings = get_settings()
        return cls(settings.jwt_secret, settings.jwt_audience or None)

    def resolve_identity(self, token: str | None) -> Identity | None:
        """Return the token's identity, or ``None`` for a missing or invalid token."""
        if not token:
            return None
        try:
            claims = decode_session_token(token, secret=self._secret, audience=self._audience)
        except jwt.PyJWTError as exc:
            logger.debug("session token rejected: %s", exc)
            return None
        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            return None
        return Identity(identity_id=subject, email=claims.get("email"))
