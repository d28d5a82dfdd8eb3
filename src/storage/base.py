from __future__ import annotations

import abc
import logging
from typing import List, Optional


logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Base error for storage backends."""


class StorageUnavailable(StorageError):
    """A backend failed its constructor or capability probe."""


class StorageConfigurationError(StorageError):
    """The storage configuration itself is invalid (e.g. an unknown platform hint)."""


class StorageEngine(abc.ABC):
    """
    Async key-value contract shared by all backends.

    The public methods never raise: a failing backend logs a warning and
    degrades to `None` for reads, a no-op for writes and `[]` for key listing.
    Subclasses implement the underscored hooks and may raise freely.
    """

    name = "abstract"

    async def get_item(self, key: str) -> Optional[str]:
        try:
            return await self._get(key)
        except Exception as exc:
            logger.warning("%s storage get_item(%r) failed: %s", self.name, key, exc)
            return None

    async def set_item(self, key: str, value: str) -> None:
        try:
            if not isinstance(value, str):
                raise TypeError(f"value must be str, got {type(value).__name__}")
            await self._set(key, value)
        except Exception as exc:
            logger.warning("%s storage set_item(%r) failed: %s", self.name, key, exc)

    async def remove_item(self, key: str) -> None:
        try:
            await self._remove(key)
        except Exception as exc:
            logger.warning("%s storage remove_item(%r) failed: %s", self.name, key, exc)

    async def get_all_keys(self) -> List[str]:
        try:
            return list(await self._keys())
        except Exception as exc:
            logger.warning("%s storage get_all_keys failed: %s", self.name, exc)
            return []

    async def aclose(self) -> None:
        return None

    # --------------- Backend hooks ---------------
    @abc.abstractmethod
    async def _get(self, key: str) -> Optional[str]: ...

    @abc.abstractmethod
    async def _set(self, key: str, value: str) -> None: ...

    @abc.abstractmethod
    async def _remove(self, key: str) -> None: ...

    async def _keys(self) -> List[str]:
        raise NotImplementedError(f"{self.name} storage does not support key listing")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


__all__ = [
    "StorageEngine",
    "StorageError",
    "StorageUnavailable",
    "StorageConfigurationError",
]
