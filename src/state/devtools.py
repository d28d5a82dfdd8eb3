from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Deque, List

from .actions import now_iso
from .models import Action

if TYPE_CHECKING:
    from .store import Store


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionRecord:
    type: str
    payload: Any
    error: bool
    at: str


class DevTools:
    """Bounded in-memory action history plus DEBUG logging of every action."""

    def __init__(self, max_history: int = 200) -> None:
        self.history: Deque[ActionRecord] = deque(maxlen=max_history)

    def middleware(self, store: "Store", action: Action, next_: Callable[[Action], Any]) -> Any:
        result = next_(action)
        self.history.append(ActionRecord(action.type, action.payload, action.error, now_iso()))
        logger.debug("action %s%s", action.type, " (error)" if action.error else "")
        return result

    def action_types(self) -> List[str]:
        return [r.type for r in self.history]

    def clear(self) -> None:
        self.history.clear()


__all__ = ["DevTools", "ActionRecord"]
