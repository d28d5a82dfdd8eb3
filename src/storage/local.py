from __future__ import annotations

from typing import Any, List, Optional

from .base import StorageEngine, StorageUnavailable


SENTINEL_KEY = "__hims_storage_test__"


def browser_local_storage() -> Optional[Any]:
    """Return the host's `localStorage` object when running in a browser (Pyodide), else None."""
    try:
        import js  # type: ignore[import-not-found]  # only present under Pyodide
    except ImportError:
        return None
    return getattr(js, "localStorage", None)


def local_storage_works(backend: Any) -> bool:
    """Capability test: write and delete a sentinel key. Any failure means unusable."""
    if backend is None:
        return False
    backend.setItem(SENTINEL_KEY, "test")
    backend.removeItem(SENTINEL_KEY)
    return True


class LocalStorageEngine(StorageEngine):
    """
    Adapter over a Web Storage object (`getItem`, `setItem`, `removeItem`,
    `key`, `length`), e.g. `js.localStorage` in browser-class hosts.
    """

    name = "local"

    def __init__(self, backend: Optional[Any] = None) -> None:
        backend = backend if backend is not None else browser_local_storage()
        if backend is None:
            raise StorageUnavailable("localStorage is not available in this environment")
        self._backend = backend

    async def _get(self, key: str) -> Optional[str]:
        value = self._backend.getItem(key)
        return None if value is None else str(value)

    async def _set(self, key: str, value: str) -> None:
        self._backend.setItem(key, value)

    async def _remove(self, key: str) -> None:
        self._backend.removeItem(key)

    async def _keys(self) -> List[str]:
        keys: List[str] = []
        for i in range(int(self._backend.length)):
            k = self._backend.key(i)
            if k is not None:
                keys.append(str(k))
        return keys
