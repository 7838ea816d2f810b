"""
Authentication: resolve a bearer token to a verified Principal.

The identity provider is an external collaborator. The pipeline only needs
`authenticate(token) -> Principal`, raising AUTH_ERROR when no valid principal
can be established.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from domain.errors import AppError
from domain.principal import Principal

logger = logging.getLogger(__name__)


class Authenticator(Protocol):
    def authenticate(self, token: Optional[str]) -> Principal:
        ...


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an `Authorization: Bearer <token>` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class SupabaseAuthenticator:
    """Verifies access tokens with Supabase Auth (`auth.get_user`)."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def authenticate(self, token: Optional[str]) -> Principal:
        if not token:
            raise AppError.authentication()

        try:
            response = self._client.auth.get_user(token)
        except Exception as exc:
            # Expired, revoked and malformed tokens all land here.
            logger.info("Token verification failed: %s", exc)
            raise AppError.authentication() from exc

        user = getattr(response, "user", None)
        if user is None or not getattr(user, "id", None):
            raise AppError.authentication()

        return Principal(user_id=str(user.id), email=getattr(user, "email", None))


__all__ = ["Authenticator", "SupabaseAuthenticator", "bearer_token"]
