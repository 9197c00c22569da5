"""
Auth Provider — resolves a bearer token to the caller's identity.

TokenAuthProvider keeps tokens in memory; it stands in for the managed auth
service the handlers consult on every request.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional
from uuid import uuid4

from fastapi import Header, Request

from edusync.errors import UnauthorizedError
from edusync.models.identity import UserIdentity


class AuthProvider(ABC):
    @abstractmethod
    def get_user(self, token: str) -> Optional[UserIdentity]:
        """Identity for a token, or None if the token is unknown."""


class TokenAuthProvider(AuthProvider):
    def __init__(self):
        self._tokens: Dict[str, UserIdentity] = {}

    def issue_token(self, user: UserIdentity, token: Optional[str] = None) -> str:
        token = token or uuid4().hex
        self._tokens[token] = user
        return token

    def revoke(self, token: str) -> None:
        self._tokens.pop(token, None)

    def get_user(self, token: str) -> Optional[UserIdentity]:
        return self._tokens.get(token)


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Token from an 'Authorization: Bearer <token>' header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def authenticate(provider: AuthProvider, token: Optional[str]) -> UserIdentity:
    if not token:
        raise UnauthorizedError("Unauthorized")
    user = provider.get_user(token)
    if user is None:
        raise UnauthorizedError("Unauthorized")
    return user


def current_user(
    request: Request, authorization: Optional[str] = Header(default=None)
) -> UserIdentity:
    """FastAPI dependency: the authenticated caller."""
    provider: AuthProvider = request.app.state.auth_provider
    return authenticate(provider, parse_bearer(authorization))
