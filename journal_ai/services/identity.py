# =============================================
# File: journal_ai/services/identity.py
# Purpose: Bearer-token verification against the identity provider
# =============================================
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import requests
from loguru import logger

from journal_ai.core.errors import AuthError


@dataclass(frozen=True)
class Identity:
    user_id: str
    claims: Dict[str, Any] = field(default_factory=dict)


class TokenVerifier(Protocol):
    def verify(self, token: str) -> Identity: ...


def bearer_token(authorization: Optional[str]) -> str:
    """Extract the token from an `Authorization: Bearer <token>` header or raise AuthError."""
    if not authorization:
        raise AuthError("No authentication token provided")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Authorization header must use the Bearer scheme")
    return token.strip()


class StaticTokenVerifier:
    """Fixed token -> user id table (development and tests)."""

    def __init__(self, tokens: Dict[str, str] | None = None) -> None:
        self._tokens = dict(tokens or {})

    @classmethod
    def from_string(cls, raw: str) -> "StaticTokenVerifier":
        """Parse `token=user,token2=user2` (AUTH_DEV_TOKENS)."""
        tokens: Dict[str, str] = {}
        for item in (raw or "").split(","):
            token, sep, user_id = item.strip().partition("=")
            if sep and token and user_id:
                tokens[token.strip()] = user_id.strip()
        return cls(tokens)

    def verify(self, token: str) -> Identity:
        user_id = self._tokens.get(token)
        if not user_id:
            raise AuthError("Invalid authentication token")
        return Identity(user_id=user_id)


class RestTokenVerifier:
    """Ask the identity provider (`GET /auth/v1/user`) who owns the token."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0,
                 session: requests.Session | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()

    def verify(self, token: str) -> Identity:
        try:
            resp = self._session.get(
                f"{self.base_url}/auth/v1/user",
                headers={"apikey": self.api_key, "Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Identity provider unreachable: {e}")
            raise AuthError("Authentication verification failed") from e
        if resp.status_code != 200:
            raise AuthError("Invalid authentication token")
        data = resp.json() or {}
        user_id = data.get("id")
        if not user_id:
            raise AuthError("Invalid authentication token - no user found")
        claims = {"email": data.get("email")}
        claims.update(data.get("user_metadata") or {})
        return Identity(user_id=str(user_id), claims=claims)
