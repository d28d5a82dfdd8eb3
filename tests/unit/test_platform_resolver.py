from __future__ import annotations

from typing import Dict, Optional

import pytest
from cryptography.fernet import Fernet

from common.config import Settings
from storage.base import StorageConfigurationError, StorageUnavailable
from storage.file_store import FileStorageEngine
from storage.local import LocalStorageEngine
from storage.memory import MemoryStorageEngine
from storage.resolver import Candidate, PlatformResolver, resolve_storage, select
from storage.s3_store import S3StorageEngine
from storage.secure import SecureStorageEngine
from storage.sqlite_store import AsyncSqliteStorageEngine


class _WebStorage:
    def __init__(self, broken: bool = False) -> None:
        self.data: Dict[str, str] = {}
        self.broken = broken

    def getItem(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def setItem(self, key: str, value: str) -> None:
        if self.broken:
            raise PermissionError("quota exceeded")
        self.data[key] = value

    def removeItem(self, key: str) -> None:
        self.data.pop(key, None)

    def key(self, i: int) -> Optional[str]:
        return list(self.data)[i]

    @property
    def length(self) -> int:
        return len(self.data)


def _resolver(tmp_path, **overrides) -> PlatformResolver:
    settings = Settings(storage_dir=str(tmp_path), **overrides.pop("settings", {}))
    overrides.setdefault("environ", {})
    overrides.setdefault("sys_platform", "linux")
    return PlatformResolver(settings, **overrides)


def test_memory_hint(tmp_path):
    assert isinstance(_resolver(tmp_path).resolve("memory"), MemoryStorageEngine)


def test_hint_is_case_insensitive(tmp_path):
    assert isinstance(_resolver(tmp_path).resolve("  Memory "), MemoryStorageEngine)


def test_unknown_hint_raises(tmp_path):
    with pytest.raises(StorageConfigurationError):
        _resolver(tmp_path).resolve("mainframe")


def test_local_hint_uses_working_local_storage(tmp_path):
    engine = _resolver(tmp_path, local_storage=_WebStorage()).resolve("local")
    assert isinstance(engine, LocalStorageEngine)


def test_local_hint_falls_back_when_probe_fails(tmp_path):
    engine = _resolver(tmp_path, local_storage=_WebStorage(broken=True)).resolve("local")
    assert isinstance(engine, MemoryStorageEngine)


def test_embedded_hint_uses_file_storage(tmp_path):
    engine = _resolver(tmp_path).resolve("embedded")
    assert isinstance(engine, FileStorageEngine)
    assert engine.path.parent == tmp_path


def test_mobile_hint_uses_async_sqlite(tmp_path):
    engine = _resolver(tmp_path).resolve("mobile")
    assert isinstance(engine, AsyncSqliteStorageEngine)
    assert engine.path.parent == tmp_path


def test_mobile_secure_without_key_falls_back_to_async(tmp_path):
    engine = _resolver(tmp_path).resolve("mobile-secure")
    assert isinstance(engine, AsyncSqliteStorageEngine)


def test_mobile_secure_with_key(tmp_path):
    key = Fernet.generate_key().decode("ascii")
    engine = _resolver(tmp_path, settings={"fernet_key": key}).resolve("mobile-secure")
    assert isinstance(engine, SecureStorageEngine)


def test_remote_without_bucket_falls_back_to_memory(tmp_path):
    assert isinstance(_resolver(tmp_path).resolve("remote"), MemoryStorageEngine)


def test_remote_with_bucket(tmp_path):
    engine = _resolver(tmp_path, settings={"state_bucket": "b"}, s3=object()).resolve("remote")
    assert isinstance(engine, S3StorageEngine)


def test_settings_hint_used_when_no_explicit_hint(tmp_path):
    engine = _resolver(tmp_path, settings={"platform_hint": "embedded"}).resolve()
    assert isinstance(engine, FileStorageEngine)


def test_auto_detects_embedded_marker_first(tmp_path):
    engine = _resolver(
        tmp_path, settings={"embedded": True}, sys_platform="android", local_storage=_WebStorage()
    ).resolve()
    assert isinstance(engine, FileStorageEngine)


def test_auto_detects_mobile_platform(tmp_path):
    engine = _resolver(tmp_path, sys_platform="ios", local_storage=_WebStorage()).resolve()
    assert isinstance(engine, AsyncSqliteStorageEngine)


def test_auto_detects_mobile_environment(tmp_path):
    engine = _resolver(tmp_path, environ={"ANDROID_ARGUMENT": "1"}).resolve()
    assert isinstance(engine, AsyncSqliteStorageEngine)


def test_auto_detects_local_storage(tmp_path):
    engine = _resolver(tmp_path, local_storage=_WebStorage()).resolve()
    assert isinstance(engine, LocalStorageEngine)


def test_auto_defaults_to_memory(tmp_path):
    assert isinstance(_resolver(tmp_path).resolve(), MemoryStorageEngine)


def test_select_skips_failing_factories():
    def unavailable():
        raise StorageUnavailable("nope")

    def bad_probe():
        raise RuntimeError("probe exploded")

    engine = select(
        [
            Candidate("first", lambda: True, unavailable),
            Candidate("second", bad_probe, MemoryStorageEngine),
            Candidate("third", lambda: False, MemoryStorageEngine),
        ]
    )
    # Exhausted chain still yields a usable engine
    assert isinstance(engine, MemoryStorageEngine)


def test_resolve_storage_helper():
    assert isinstance(resolve_storage("memory", Settings()), MemoryStorageEngine)
