from __future__ import annotations

from typing import Dict, List, Optional

from .base import StorageEngine


class MemoryStorageEngine(StorageEngine):
    """Process-lifetime dict storage; always available and the final fallback."""

    name = "memory"

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    async def _get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def _set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def _remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def _keys(self) -> List[str]:
        return list(self._data.keys())

    def __len__(self) -> int:
        return len(self._data)
