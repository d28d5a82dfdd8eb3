from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ValidationError

from storage.base import StorageEngine


logger = logging.getLogger(__name__)

TOKEN_STORAGE_KEY = "hims_auth_token"


class AuthToken(BaseModel):
    """Structured bearer token as returned by the login endpoint."""

    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


Credential = Union[AuthToken, str]


def _parse_token(raw: str) -> Credential:
    # Structured token first, plain string token otherwise
    try:
        data = json.loads(raw)
    except ValueError:
        return raw
    if isinstance(data, dict):
        try:
            return AuthToken.model_validate(data)
        except ValidationError:
            return raw
    return raw


class CredentialSlot:
    """
    Single shared cell holding the bearer credential, outside the persisted
    state tree.

    - `store()` is for the login flow; `clear()` is for the sync client on 401.
    - When a storage engine is given (normally the secure backend), the value
      is mirrored there so it survives restarts; `load()` reads it back.
    """

    def __init__(self, storage: Optional[StorageEngine] = None, *, key: str = TOKEN_STORAGE_KEY) -> None:
        self._storage = storage
        self._key = key
        self._token: Optional[Credential] = None

    def get(self) -> Optional[Credential]:
        return self._token

    def authorization_header(self) -> Optional[str]:
        token = self._token
        if token is None:
            return None
        if isinstance(token, AuthToken):
            return f"{token.token_type or 'Bearer'} {token.access_token}"
        return f"Bearer {token}"

    async def load(self) -> Optional[Credential]:
        if self._storage is None:
            return self._token
        raw = await self._storage.get_item(self._key)
        self._token = _parse_token(raw) if raw else None
        return self._token

    async def store(self, token: Credential) -> None:
        self._token = token
        if self._storage is not None:
            raw = token.model_dump_json() if isinstance(token, AuthToken) else token
            await self._storage.set_item(self._key, raw)

    async def clear(self) -> None:
        # Drop the in-memory value before any await so concurrent requests go out unauthenticated
        had_token = self._token is not None
        self._token = None
        if self._storage is not None:
            await self._storage.remove_item(self._key)
        if had_token:
            logger.info("Credentials cleared")


__all__ = ["AuthToken", "Credential", "CredentialSlot", "TOKEN_STORAGE_KEY"]
