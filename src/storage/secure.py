from __future__ import annotations

from typing import List, Optional

from cryptography.fernet import Fernet, InvalidToken

from .base import StorageEngine, StorageUnavailable


def to_fernet(key: str | bytes) -> Fernet:
    """Construct a Fernet instance from a urlsafe base64-encoded 32-byte key (str or bytes)."""
    if isinstance(key, str):
        key_bytes = key.encode("utf-8")
    else:
        key_bytes = key
    return Fernet(key_bytes)


class SecureStorageEngine(StorageEngine):
    """
    Encrypts every value with Fernet before handing it to an inner engine.

    Meant for sensitive values (credentials). Without a key the engine is
    unavailable and the resolver moves on to the plain async backend.
    """

    name = "secure"

    def __init__(self, inner: StorageEngine, fernet_key: Optional[str | bytes]) -> None:
        if not fernet_key:
            raise StorageUnavailable("secure storage requires an encryption key")
        try:
            self._fernet = to_fernet(fernet_key)
        except (ValueError, TypeError) as exc:
            raise StorageUnavailable(f"invalid encryption key: {exc}") from exc
        self._inner = inner

    async def _get(self, key: str) -> Optional[str]:
        token = await self._inner.get_item(key)
        if token is None:
            return None
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Failed to decrypt value: invalid Fernet token") from exc

    async def _set(self, key: str, value: str) -> None:
        token = self._fernet.encrypt(value.encode("utf-8")).decode("ascii")
        await self._inner.set_item(key, token)

    async def _remove(self, key: str) -> None:
        await self._inner.remove_item(key)

    async def _keys(self) -> List[str]:
        return await self._inner.get_all_keys()

    async def aclose(self) -> None:
        await self._inner.aclose()
