"""Bearer token authentication for the broker API."""
from __future__ import annotations

import secrets
from typing import Dict, Mapping

from fastapi import HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer


class TokenAuth:
    """Resolve bearer tokens to usernames using constant-time comparisons.

    Identity is established elsewhere (OAuth, JWT issuance); this dependency
    only maps an already issued token to the username the core trusts.
    """

    def __init__(self, tokens: Mapping[str, str]):
        table: Dict[str, str] = {
            token.strip(): username.strip()
            for token, username in tokens.items()
            if token.strip() and username.strip()
        }
        self._tokens = table
        self._bearer = HTTPBearer(auto_error=False)

    @property
    def configured(self) -> bool:
        return bool(self._tokens)

    async def __call__(self, request: Request) -> str:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access token required")

        username = self.resolve(credentials.credentials)
        if username is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired token")
        return username

    def resolve(self, provided: str) -> str | None:
        match: str | None = None
        for token, username in self._tokens.items():
            if secrets.compare_digest(provided.encode("utf-8"), token.encode("utf-8")):
                match = username
        return match


__all__ = ["TokenAuth"]
