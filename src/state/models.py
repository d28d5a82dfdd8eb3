from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_PERSIST_KEY = "hims-root"
DEFAULT_VERSION = -1


@dataclass(frozen=True)
class Action:
    """A dispatched action: `type` names it, `payload` carries data, `error` marks failures."""

    type: str
    payload: Any = None
    meta: Mapping[str, Any] = field(default_factory=dict)
    error: bool = False


class PersistConfig(BaseModel):
    """
    Immutable persistence settings, fixed at store-assembly time.

    - `whitelist=None` persists every slice of the reducer graph.
    - `blacklist` always wins: a slice listed in both sets is never persisted.
    - `migrate(slices, stored_version)` upgrades envelopes written under an
      older `version`.
    """

    model_config = ConfigDict(frozen=True)

    key: str = DEFAULT_PERSIST_KEY
    whitelist: Optional[FrozenSet[str]] = None
    blacklist: FrozenSet[str] = Field(default_factory=frozenset)
    version: int = DEFAULT_VERSION
    debug: bool = False
    migrate: Optional[Callable[[Dict[str, Any], int], Dict[str, Any]]] = None

    @property
    def storage_key(self) -> str:
        return f"persist:{self.key}"

    def is_persisted(self, name: str) -> bool:
        if name in self.blacklist:
            return False
        return self.whitelist is None or name in self.whitelist

    def persisted_slices(self, names: Iterable[str]) -> List[str]:
        return [n for n in names if self.is_persisted(n)]


class StoreConfig(BaseModel):
    """Options accepted by `create_store`."""

    platform_hint: Optional[str] = None
    whitelist: Optional[List[str]] = Field(default_factory=lambda: ["patients"])
    blacklist: List[str] = Field(default_factory=lambda: ["audit"])
    enable_effects: bool = True
    enable_devtools: bool = False
    key: str = DEFAULT_PERSIST_KEY
    version: int = DEFAULT_VERSION
    debug: bool = False

    def persist_config(
        self, migrate: Optional[Callable[[Dict[str, Any], int], Dict[str, Any]]] = None
    ) -> PersistConfig:
        return PersistConfig(
            key=self.key,
            whitelist=None if self.whitelist is None else frozenset(self.whitelist),
            blacklist=frozenset(self.blacklist),
            version=self.version,
            debug=self.debug,
            migrate=migrate,
        )


__all__ = ["Action", "PersistConfig", "StoreConfig", "DEFAULT_PERSIST_KEY", "DEFAULT_VERSION"]
