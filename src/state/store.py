"""
Store assembly.

`create_store()` wires the reducer graph, the persistence wrapper, the
storage engine, the effect coordinator and optional dev tooling into one
`StoreHandle`. There is no module-level store: callers keep the handle
and pass it (or its `store`) where it is needed.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence

from common.config import Settings
from common.credentials import CredentialSlot
from common.patients_api import PatientsApi
from common.sync_client import SyncClient
from storage.base import StorageEngine
from storage.resolver import PlatformResolver

from .actions import INIT
from .devtools import DevTools
from .effects import EffectCoordinator, Saga
from .models import Action, StoreConfig
from .persistence import Persistor, RehydrationResult, persist_reducer
from .sagas import patients_saga, root_saga
from .slices import Reducer, default_reducers


logger = logging.getLogger(__name__)

Dispatch = Callable[[Action], Any]
Middleware = Callable[["Store", Action, Dispatch], Any]


def combine_reducers(reducers: Mapping[str, Reducer]) -> Reducer:
    """Build a root reducer from named slice reducers; keys outside the map are carried over."""
    items = list(reducers.items())

    def combined(state: Optional[Dict[str, Any]], action: Action) -> Dict[str, Any]:
        state = state or {}
        next_state = dict(state)
        changed = not state
        for name, reducer in items:
            previous = state.get(name)
            updated = reducer(previous, action)
            if updated is not previous:
                next_state[name] = updated
                changed = True
        return next_state if changed else state

    return combined


class Store:
    """
    Single state tree updated by dispatching actions through the middleware chain.

    While gated (before rehydration), dispatched actions are queued in order and
    replayed by `release()`. Reducers must not dispatch.
    """

    def __init__(self, reducer: Reducer, *, middlewares: Sequence[Middleware] = (), gated: bool = False) -> None:
        self._reducer = reducer
        self._listeners: List[Callable[[], None]] = []
        self._reducing = False
        self._gated = gated
        self._queue: Deque[Action] = deque()
        self._state = reducer(None, Action(INIT))
        dispatch: Dispatch = self._reduce
        for mw in reversed(list(middlewares)):
            dispatch = self._link(mw, dispatch)
        self._dispatch = dispatch

    def _link(self, mw: Middleware, next_: Dispatch) -> Dispatch:
        def dispatch(action: Action) -> Any:
            return mw(self, action, next_)

        return dispatch

    @property
    def is_gated(self) -> bool:
        return self._gated

    @property
    def queued(self) -> int:
        return len(self._queue)

    def get_state(self) -> Dict[str, Any]:
        return self._state

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: Action) -> Any:
        if not isinstance(action, Action):
            raise TypeError(f"Actions must be Action instances, got {type(action).__name__}")
        if self._reducing:
            raise RuntimeError("Reducers may not dispatch actions")
        if self._gated:
            self._queue.append(action)
            logger.debug("Queued %s until rehydration completes", action.type)
            return action
        return self._dispatch(action)

    def release(self, action: Optional[Action] = None) -> None:
        """
        Open the gate: dispatch `action` first, then every queued action in order.

        A queued action whose dispatch raises is logged and skipped; its caller
        is long gone. The gate opens even when `action` itself fails.
        """
        try:
            if action is not None:
                self._dispatch(action)
        finally:
            while self._queue:
                queued = self._queue.popleft()
                try:
                    self._dispatch(queued)
                except Exception:
                    logger.exception("Queued action %s failed during replay", queued.type)
            self._gated = False

    def _reduce(self, action: Action) -> Action:
        if self._reducing:
            raise RuntimeError("Reducers may not dispatch actions")
        self._reducing = True
        try:
            self._state = self._reducer(self._state, action)
        finally:
            self._reducing = False
        for listener in list(self._listeners):
            listener()
        return action


@dataclass
class StoreHandle:
    store: Store
    rehydrated: "asyncio.Task[RehydrationResult]"
    persistor: Persistor
    storage: StorageEngine
    effects: Optional[EffectCoordinator] = None
    devtools: Optional[DevTools] = None
    client: Optional[SyncClient] = None
    owns_client: bool = False
    owns_storage: bool = False

    def dispatch(self, action: Action) -> Any:
        return self.store.dispatch(action)

    def get_state(self) -> Dict[str, Any]:
        return self.store.get_state()

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        return self.store.subscribe(listener)

    async def settle(self) -> None:
        """Wait for rehydration, running workers and pending writes."""
        await self.rehydrated
        while True:
            if self.effects is not None:
                await self.effects.wait_idle()
            await self.persistor.flush()
            if self.effects is None or self.effects.in_flight == 0:
                break

    async def aclose(self) -> None:
        await self.settle()
        if self.owns_client and self.client is not None:
            await self.client.aclose()
        if self.owns_storage:
            await self.storage.aclose()


def create_store(
    config: Optional[StoreConfig] = None,
    *,
    storage: Optional[StorageEngine] = None,
    client: Optional[SyncClient] = None,
    credentials: Optional[CredentialSlot] = None,
    reducers: Optional[Mapping[str, Reducer]] = None,
    sagas: Optional[Sequence[Saga]] = None,
    middlewares: Sequence[Middleware] = (),
    settings: Optional[Settings] = None,
    migrate: Optional[Callable[[Dict[str, Any], int], Dict[str, Any]]] = None,
) -> StoreHandle:
    """
    Assemble a store. Must be called with a running event loop.

    Rehydration starts immediately as a task (`handle.rehydrated`); actions
    dispatched before it completes are queued and applied after the
    persisted state. When `sagas` is omitted and effects are enabled, the
    patients saga runs against `client` (built from `settings` if absent).
    """
    config = config or StoreConfig()
    settings = settings or Settings.from_env()
    loop = asyncio.get_running_loop()

    owns_storage = storage is None
    engine = storage if storage is not None else PlatformResolver(settings).resolve(config.platform_hint)
    persist_config = config.persist_config(migrate)
    logger.info(
        "Creating store %s on %s storage (persisting %s)",
        persist_config.key, getattr(engine, "name", type(engine).__name__),
        "all" if persist_config.whitelist is None else sorted(persist_config.whitelist),
    )

    effects = EffectCoordinator() if config.enable_effects else None
    devtools = DevTools() if (config.enable_devtools or config.debug) else None
    chain: List[Middleware] = list(middlewares)
    if devtools is not None:
        chain.append(devtools.middleware)
    if effects is not None:
        chain.append(effects.middleware)

    root = persist_reducer(persist_config, combine_reducers(reducers or default_reducers()))
    store = Store(root, middlewares=chain, gated=True)
    persistor = Persistor(persist_config, engine)
    persistor.attach(store)

    owns_client = False
    if effects is not None:
        effects.bind(store)
        if sagas is None:
            if client is None:
                client = SyncClient.from_settings(settings, credentials=credentials)
                owns_client = True
            sagas = [patients_saga(PatientsApi(client))]
        effects.run(root_saga(*sagas))

    rehydrated = loop.create_task(persistor.rehydrate())
    return StoreHandle(
        store=store,
        rehydrated=rehydrated,
        persistor=persistor,
        storage=engine,
        effects=effects,
        devtools=devtools,
        client=client,
        owns_client=owns_client,
        owns_storage=owns_storage,
    )


__all__ = ["Store", "StoreHandle", "combine_reducers", "create_store", "Middleware"]
