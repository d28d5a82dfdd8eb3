from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional, Set, Tuple, Union

from common.sync_client import normalize_error

from .actions import intent_types, now_iso
from .models import Action

if TYPE_CHECKING:
    from .store import Store


logger = logging.getLogger(__name__)

Pattern = Union[str, Callable[[Action], bool]]
Worker = Callable[["EffectContext", Action], Awaitable[None]]
Saga = Callable[["EffectCoordinator"], None]


def _matcher(pattern: Pattern) -> Callable[[Action], bool]:
    if callable(pattern):
        return pattern
    if pattern == "*":
        return lambda action: True
    return lambda action: action.type == pattern


class EffectContext:
    """What a worker may do: dispatch, read state, call out, or wait for an action."""

    def __init__(self, coordinator: "EffectCoordinator", store: "Store") -> None:
        self._coordinator = coordinator
        self._store = store

    def put(self, action: Action) -> Action:
        return self._store.dispatch(action)

    def select(self, selector: Optional[Callable[[Any], Any]] = None) -> Any:
        state = self._store.get_state()
        return selector(state) if selector is not None else state

    async def call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        result = fn(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def take(self, pattern: Pattern) -> Action:
        return await self._coordinator.take(pattern)


class EffectCoordinator:
    """
    Runs async workers in response to dispatched actions.

    Registered through `take_every`, a worker is started for every matching
    action once that action has been reduced. Workers run concurrently; there
    is no de-duplication and no cancellation of superseded work. A worker that
    raises is logged and dropped; it never takes the store down.
    """

    def __init__(self) -> None:
        self._watchers: List[Tuple[Callable[[Action], bool], Worker]] = []
        self._takers: List[Tuple[Callable[[Action], bool], asyncio.Future]] = []
        self._tasks: Set[asyncio.Task] = set()
        self._store: Optional["Store"] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._started = False

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def bind(self, store: "Store") -> None:
        self._store = store
        self._loop = asyncio.get_running_loop()

    def run(self, *sagas: Saga) -> None:
        """Start the top-level sagas. Only allowed once per coordinator."""
        if self._started:
            raise RuntimeError("Effect coordinator already started")
        self._started = True
        for saga in sagas:
            saga(self)

    def take_every(self, pattern: Pattern, worker: Worker) -> None:
        self._watchers.append((_matcher(pattern), worker))

    async def take(self, pattern: Pattern) -> Action:
        if self._loop is None:
            raise RuntimeError("Effect coordinator is not bound to a store")
        future = self._loop.create_future()
        self._takers.append((_matcher(pattern), future))
        return await future

    def middleware(self, store: "Store", action: Action, next_: Callable[[Action], Any]) -> Any:
        result = next_(action)
        self._emit(action)
        return result

    async def wait_idle(self) -> None:
        """Wait until no worker is running, including workers started meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # -------- Internal --------
    def _emit(self, action: Action) -> None:
        for entry in list(self._takers):
            matcher, future = entry
            if future.done():
                self._takers.remove(entry)
            elif matcher(action):
                future.set_result(action)
                self._takers.remove(entry)

        for matcher, worker in self._watchers:
            if matcher(action):
                self._spawn(worker, action)

    def _spawn(self, worker: Worker, action: Action) -> None:
        if self._store is None or self._loop is None:
            raise RuntimeError("Effect coordinator is not bound to a store")
        ctx = EffectContext(self, self._store)
        task = self._loop.create_task(self._run_worker(worker, ctx, action))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_worker(self, worker: Worker, ctx: EffectContext, action: Action) -> None:
        try:
            await worker(ctx, action)
        except Exception:
            logger.exception("Worker %s failed on %s", getattr(worker, "__name__", worker), action.type)


def intent_worker(domain: str, operation: str, call: Callable[[Any], Awaitable[Any]]) -> Worker:
    """
    Build a worker that performs `call(payload)` for `<domain>/<operation>/requested`
    and dispatches exactly one terminal action.

    The terminal action's meta carries the request payload and the
    completion timestamp. Failures are normalized into `ApiError` payloads.
    If reducing the success action raises, the state never saw it, so a
    failed action is dispatched in its place.
    """
    types = intent_types(domain, operation)

    def fail(ctx: EffectContext, action: Action, exc: Exception) -> None:
        error = normalize_error(exc)
        ctx.put(
            Action(
                types.failed,
                error.model_dump(),
                meta={"request": action.payload, "timestamp": now_iso()},
                error=True,
            )
        )

    async def worker(ctx: EffectContext, action: Action) -> None:
        try:
            result = await ctx.call(call, action.payload)
        except Exception as exc:
            error = normalize_error(exc)
            logger.warning("%s/%s failed: %s (%s)", domain, operation, error.message, error.code)
            fail(ctx, action, exc)
            return
        try:
            ctx.put(Action(types.succeeded, result, meta={"request": action.payload, "timestamp": now_iso()}))
        except Exception as exc:
            # The result never reached state; report the intent as failed instead
            logger.exception("%s/%s succeeded but reducing %s raised", domain, operation, types.succeeded)
            fail(ctx, action, exc)

    worker.__name__ = f"{domain}_{operation}_worker"
    return worker


__all__ = ["EffectCoordinator", "EffectContext", "intent_worker", "Pattern", "Worker", "Saga"]
