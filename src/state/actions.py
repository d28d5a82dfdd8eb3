from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, NamedTuple, Optional

from .models import Action


INIT = "@@store/INIT"
REHYDRATE = "persist/REHYDRATE"

REQUESTED = "requested"
SUCCEEDED = "succeeded"
FAILED = "failed"


class IntentTypes(NamedTuple):
    """Action types for one intent: `<domain>/<operation>/{requested,succeeded,failed}`."""

    requested: str
    succeeded: str
    failed: str


def intent_types(domain: str, operation: str) -> IntentTypes:
    base = f"{domain}/{operation}"
    return IntentTypes(f"{base}/{REQUESTED}", f"{base}/{SUCCEEDED}", f"{base}/{FAILED}")


def split_intent(action_type: str) -> Optional[tuple[str, str, str]]:
    """Return `(domain, operation, phase)` for intent/terminal types, else None."""
    parts = action_type.split("/")
    if len(parts) != 3 or parts[2] not in (REQUESTED, SUCCEEDED, FAILED):
        return None
    return parts[0], parts[1], parts[2]


def requested(domain: str, operation: str, payload: Any = None) -> Action:
    return Action(intent_types(domain, operation).requested, payload)


def now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds")


__all__ = [
    "INIT",
    "REHYDRATE",
    "IntentTypes",
    "intent_types",
    "split_intent",
    "requested",
    "now_iso",
    "REQUESTED",
    "SUCCEEDED",
    "FAILED",
]
