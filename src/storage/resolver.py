from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from common.config import Settings

from .base import StorageConfigurationError, StorageEngine
from .file_store import DEFAULT_FILE_NAME, FileStorageEngine
from .local import LocalStorageEngine, browser_local_storage, local_storage_works
from .memory import MemoryStorageEngine
from .s3_store import S3StorageEngine
from .secure import SecureStorageEngine
from .sqlite_store import AsyncSqliteStorageEngine


logger = logging.getLogger(__name__)

DEFAULT_STORAGE_DIR = ".hims"
SQLITE_FILE_NAME = "hims-store.db"
MOBILE_PLATFORMS = ("android", "ios")


@dataclass(frozen=True)
class Candidate:
    """One entry of a fallback chain: `factory` is tried only when `probe()` is true."""

    name: str
    probe: Callable[[], bool]
    factory: Callable[[], StorageEngine]


def _always() -> bool:
    return True


def select(candidates: Sequence[Candidate]) -> StorageEngine:
    """
    Return the first candidate whose probe passes and whose factory succeeds.

    Probe and factory failures are logged and skipped; if the whole chain is
    exhausted an in-memory engine is returned, so selection never raises.
    """
    for cand in candidates:
        try:
            if not cand.probe():
                logger.debug("Storage candidate %s: probe negative", cand.name)
                continue
            engine = cand.factory()
        except Exception as exc:
            logger.warning("Storage backend %s unavailable, trying next: %s", cand.name, exc)
            continue
        logger.info("Selected %s storage backend", engine.name)
        return engine
    logger.warning("No storage backend available, using memory storage")
    return MemoryStorageEngine()


class PlatformResolver:
    """
    Picks the storage engine for one store instance.

    With a hint, the hint's fallback chain is used (an unknown hint raises
    `StorageConfigurationError`). Without one, the host is probed in order:
    embedded-desktop marker, mobile-runtime marker, browser localStorage,
    then memory.
    """

    HINTS = ("memory", "local", "mobile", "mobile-secure", "embedded", "remote")

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        environ: Optional[Mapping[str, str]] = None,
        sys_platform: Optional[str] = None,
        local_storage: Optional[Any] = None,
        s3: Optional[object] = None,
    ) -> None:
        self._settings = settings or Settings()
        self._environ = os.environ if environ is None else environ
        self._platform = sys_platform or sys.platform
        self._local_storage = local_storage
        self._s3 = s3

    # -------- Markers --------
    def is_embedded(self) -> bool:
        return self._settings.embedded or bool(getattr(sys, "frozen", False))

    def is_mobile(self) -> bool:
        return self._platform in MOBILE_PLATFORMS or "ANDROID_ARGUMENT" in self._environ

    def has_local_storage(self) -> bool:
        return local_storage_works(self._local_backend())

    def _local_backend(self) -> Optional[Any]:
        if self._local_storage is None:
            self._local_storage = browser_local_storage()
        return self._local_storage

    def _storage_dir(self) -> Path:
        return Path(self._settings.storage_dir or DEFAULT_STORAGE_DIR)

    # -------- Factories --------
    def _memory(self) -> Candidate:
        return Candidate("memory", _always, MemoryStorageEngine)

    def _local(self) -> Candidate:
        return Candidate("local", self.has_local_storage, lambda: LocalStorageEngine(self._local_backend()))

    def _async(self) -> Candidate:
        return Candidate("async", _always, lambda: AsyncSqliteStorageEngine(self._storage_dir() / SQLITE_FILE_NAME))

    def _secure(self) -> Candidate:
        def factory() -> StorageEngine:
            inner = AsyncSqliteStorageEngine(self._storage_dir() / SQLITE_FILE_NAME)
            return SecureStorageEngine(inner, self._settings.fernet_key)

        return Candidate("secure", _always, factory)

    def _file(self) -> Candidate:
        return Candidate("file", _always, lambda: FileStorageEngine(self._storage_dir() / DEFAULT_FILE_NAME))

    def _remote(self) -> Candidate:
        return Candidate(
            "remote",
            _always,
            lambda: S3StorageEngine(
                bucket=self._settings.state_bucket,
                prefix=self._settings.state_prefix,
                s3=self._s3,
                fernet_key=self._settings.fernet_key,
            ),
        )

    # -------- Chains --------
    def chain(self, hint: str) -> List[Candidate]:
        chains: Dict[str, Callable[[], List[Candidate]]] = {
            "memory": lambda: [self._memory()],
            "local": lambda: [self._local(), self._memory()],
            "mobile": lambda: [self._async(), self._memory()],
            "mobile-secure": lambda: [self._secure(), self._async(), self._memory()],
            "embedded": lambda: [self._file(), self._memory()],
            "remote": lambda: [self._remote(), self._memory()],
        }
        builder = chains.get(hint.strip().lower())
        if builder is None:
            raise StorageConfigurationError(
                f"Unsupported platform hint: {hint!r} (expected one of {', '.join(self.HINTS)})"
            )
        return builder()

    def auto_candidates(self) -> List[Candidate]:
        file_c, async_c = self._file(), self._async()
        return [
            Candidate("embedded", self.is_embedded, file_c.factory),
            Candidate("mobile", self.is_mobile, async_c.factory),
            self._local(),
            self._memory(),
        ]

    def resolve(self, hint: Optional[str] = None) -> StorageEngine:
        if hint is None:
            hint = self._settings.platform_hint
        candidates = self.chain(hint) if hint else self.auto_candidates()
        return select(candidates)


def resolve_storage(hint: Optional[str] = None, settings: Optional[Settings] = None) -> StorageEngine:
    return PlatformResolver(settings).resolve(hint)


__all__ = ["Candidate", "PlatformResolver", "resolve_storage", "select"]
