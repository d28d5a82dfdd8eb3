from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from storage.base import StorageEngine

from .actions import REHYDRATE
from .models import Action, PersistConfig
from .slices import Reducer

if TYPE_CHECKING:
    from .store import Store


logger = logging.getLogger(__name__)

PERSIST_KEY = "_persist"
ENVELOPE = "_envelope"
MIGRATION = "_migration"
_MISSING = object()


class RehydrationDeserializeError(ValueError):
    """One slice (or the envelope itself) could not be restored; recorded, never raised."""

    def __init__(self, slice_name: str, cause: BaseException) -> None:
        super().__init__(f"Failed to restore {slice_name!r}: {cause}")
        self.slice_name = slice_name
        self.cause = cause


@dataclass
class RehydrationResult:
    slices: Dict[str, Any] = field(default_factory=dict)
    errors: List[RehydrationDeserializeError] = field(default_factory=list)
    version: Optional[int] = None
    found: bool = False


# -------- Envelope codec --------
def encode_envelope(state: Mapping[str, Any], names: List[str], version: int) -> str:
    """
    Serialize the named slices into the envelope JSON.

    Each slice is stored as its own JSON string so that one bad slice can be
    skipped on read without losing the rest.
    """
    envelope: Dict[str, Any] = {PERSIST_KEY: {"version": version}}
    for name in names:
        if name not in state:
            continue
        try:
            envelope[name] = json.dumps(state[name], separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            logger.error("Slice %r is not JSON-serializable, leaving it out of the envelope: %s", name, exc)
    return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False)


def decode_envelope(raw: Optional[str], config: PersistConfig) -> RehydrationResult:
    if raw is None:
        return RehydrationResult()

    try:
        outer = json.loads(raw)
        if not isinstance(outer, dict):
            raise ValueError("envelope is not a JSON object")
    except ValueError as exc:
        logger.warning("Persisted envelope %s is unreadable, starting from defaults: %s", config.storage_key, exc)
        return RehydrationResult(errors=[RehydrationDeserializeError(ENVELOPE, exc)], found=True)

    meta = outer.get(PERSIST_KEY)
    if isinstance(meta, str):
        try:
            meta = json.loads(meta)
        except ValueError:
            meta = None
    version = meta.get("version") if isinstance(meta, dict) else None

    result = RehydrationResult(version=version, found=True)
    for name, value in outer.items():
        if name == PERSIST_KEY:
            continue
        if not config.is_persisted(name):
            logger.warning("Ignoring non-persistable slice %r found in %s", name, config.storage_key)
            continue
        try:
            result.slices[name] = json.loads(value) if isinstance(value, str) else value
        except ValueError as exc:
            err = RehydrationDeserializeError(name, exc)
            logger.warning("%s; slice falls back to its initial state", err)
            result.errors.append(err)

    if version is not None and version != config.version:
        if config.migrate is None:
            logger.warning(
                "Envelope %s has version %s, expected %s; using it as-is",
                config.storage_key, version, config.version,
            )
        else:
            try:
                result.slices = dict(config.migrate(result.slices, version))
            except Exception as exc:
                logger.warning("Migration of %s from version %s failed: %s", config.storage_key, version, exc)
                result.errors.append(RehydrationDeserializeError(MIGRATION, exc))
                result.slices = {}
    return result


# -------- Reducer wrapper --------
def merge_slices(state: Mapping[str, Any], slices: Mapping[str, Any]) -> Dict[str, Any]:
    """Two-level merge: dict slices are shallow-merged onto the current slice, anything else replaces it."""
    merged = dict(state)
    for name, value in slices.items():
        if name not in state:
            continue
        current = state[name]
        if isinstance(current, dict) and isinstance(value, dict):
            merged[name] = {**current, **value}
        else:
            merged[name] = value
    return merged


def persist_reducer(config: PersistConfig, reducer: Reducer) -> Reducer:
    """Wrap the root reducer so it carries a `_persist` marker and applies REHYDRATE payloads."""

    def persisted(state: Optional[Dict[str, Any]], action: Action) -> Dict[str, Any]:
        if action.type == REHYDRATE and state is not None:
            slices = {k: v for k, v in (action.payload or {}).items() if config.is_persisted(k)}
            next_state = reducer(merge_slices(state, slices), action)
            return {**next_state, PERSIST_KEY: {"version": config.version, "rehydrated": True}}

        next_state = reducer(state, action)
        if PERSIST_KEY not in next_state:
            next_state = {**next_state, PERSIST_KEY: {"version": config.version, "rehydrated": False}}
        return next_state

    return persisted


# -------- Orchestrator --------
class Persistor:
    """
    Keeps the whitelisted part of a store's state in a storage engine.

    - `rehydrate()` reads the envelope once, restores what it can (bad slices
      fall back to their initial state) and releases the store's action queue.
    - After rehydration every state change that touches a persisted slice
      schedules a write. A single writer task per namespace serializes writes
      and coalesces bursts; each write stores the latest state.
    """

    def __init__(self, config: PersistConfig, storage: StorageEngine) -> None:
        self.config = config
        self.storage = storage
        self._store: Optional["Store"] = None
        self._slices: List[str] = []
        self._last: Dict[str, Any] = {}
        self._rehydrated = False
        self._paused = False
        self._pending = False
        self._writer: Optional[asyncio.Task] = None
        self.write_count = 0

    @property
    def persisted_slices(self) -> List[str]:
        return list(self._slices)

    @property
    def is_rehydrated(self) -> bool:
        return self._rehydrated

    def attach(self, store: "Store") -> None:
        self._store = store
        names = [n for n in store.get_state() if not n.startswith("_")]
        self._slices = self.config.persisted_slices(names)
        overlap = sorted((self.config.whitelist or frozenset()) & self.config.blacklist)
        if overlap:
            logger.info("Slices %s are whitelisted and blacklisted; they will not be persisted", overlap)
        store.subscribe(self._on_change)

    async def rehydrate(self) -> RehydrationResult:
        if self._store is None:
            raise RuntimeError("Persistor is not attached to a store")
        try:
            raw = await self.storage.get_item(self.config.storage_key)
            result = decode_envelope(raw, self.config)
        except Exception as exc:
            logger.exception("Rehydration of %s failed, starting from defaults", self.config.storage_key)
            result = RehydrationResult(errors=[RehydrationDeserializeError(ENVELOPE, exc)])

        known = {k: v for k, v in result.slices.items() if k in self._slices}
        if not result.found:
            logger.info("No persisted state under %s (first run)", self.config.storage_key)
        elif self.config.debug:
            logger.debug("Rehydrating %s with slices %s", self.config.storage_key, sorted(known))

        self._rehydrated = True
        self._store.release(
            Action(
                REHYDRATE,
                payload=known,
                meta={
                    "key": self.config.key,
                    "version": result.version,
                    "errors": [e.slice_name for e in result.errors],
                },
            )
        )
        return result

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False
        self._on_change()

    async def flush(self) -> None:
        """Wait until every scheduled write has landed."""
        while self._writer is not None and not self._writer.done():
            await self._writer

    async def purge(self) -> None:
        await self.flush()
        await self.storage.remove_item(self.config.storage_key)
        self._last = {}
        logger.info("Purged persisted state under %s", self.config.storage_key)

    # -------- Internal --------
    def _on_change(self) -> None:
        if self._store is None or not self._rehydrated or self._paused:
            return
        state = self._store.get_state()
        if any(state.get(n) is not self._last.get(n, _MISSING) for n in self._slices):
            self._schedule()

    def _schedule(self) -> None:
        self._pending = True
        if self._writer is None or self._writer.done():
            self._writer = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._pending:
            self._pending = False
            await self._write_current()

    async def _write_current(self) -> None:
        assert self._store is not None
        state = self._store.get_state()
        snapshot = {n: state[n] for n in self._slices if n in state}
        raw = encode_envelope(snapshot, self._slices, self.config.version)
        self._last = snapshot
        await self.storage.set_item(self.config.storage_key, raw)
        self.write_count += 1
        if self.config.debug:
            logger.debug("Persisted %s (%d bytes)", self.config.storage_key, len(raw))


__all__ = [
    "Persistor",
    "RehydrationResult",
    "RehydrationDeserializeError",
    "encode_envelope",
    "decode_envelope",
    "merge_slices",
    "persist_reducer",
]
