from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional
from uuid import uuid4

from .base import StorageEngine


logger = logging.getLogger(__name__)

DEFAULT_FILE_NAME = "hims-store.json"


class FileStorageEngine(StorageEngine):
    """
    JSON-file storage for embedded/desktop hosts.

    - Backed by a single JSON object file: { key: value, ... }.
    - The whole file is read into memory on first access; every mutation
      rewrites it through a temp file and `os.replace`.
    - A corrupt or unreadable file is logged and treated as empty.
    """

    name = "file"

    def __init__(self, path: os.PathLike[str] | str) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._data: Dict[str, str] = {}
        self._loaded = False
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read_file(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable storage file %s: %s", self._path, exc)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring storage file %s: top level is not an object", self._path)
            return {}
        return {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in raw.items()}

    def _write_file(self, data: Dict[str, str]) -> None:
        tmp = self._path.with_name(f"{self._path.name}.tmp-{uuid4().hex}")
        try:
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp, self._path)
        finally:
            if tmp.exists():
                tmp.unlink()

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._data = await asyncio.to_thread(self._read_file)
        self._loaded = True

    async def _flush(self) -> None:
        await asyncio.to_thread(self._write_file, dict(self._data))

    async def _get(self, key: str) -> Optional[str]:
        async with self._lock:
            await self._ensure_loaded()
            return self._data.get(key)

    async def _set(self, key: str, value: str) -> None:
        async with self._lock:
            await self._ensure_loaded()
            self._data[key] = value
            await self._flush()

    async def _remove(self, key: str) -> None:
        async with self._lock:
            await self._ensure_loaded()
            if self._data.pop(key, None) is not None:
                await self._flush()

    async def _keys(self) -> List[str]:
        async with self._lock:
            await self._ensure_loaded()
            return list(self._data.keys())
