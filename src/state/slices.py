"""
Reducers for the application state tree.

Each reducer takes `(state, action)` and returns the next slice state. A
reducer returns the same object when nothing changed; the persistence layer
relies on that identity to skip needless writes.
"""

from __future__ import annotations

import copy
import math
from typing import Any, Callable, Dict, List, Mapping, Optional

from .actions import FAILED, REHYDRATE, REQUESTED, SUCCEEDED, split_intent
from .models import Action


Reducer = Callable[[Any, Action], Any]

OPERATIONS = ("fetch", "create", "update", "delete")
MAX_AUDIT_ENTRIES = 500


# -------- patients --------
PATIENTS_INITIAL: Dict[str, Any] = {
    "patients": [],
    "total": 0,
    "page": 1,
    "page_size": 20,
    "total_pages": 0,
    "selected": None,
    "filters": {"search": ""},
    "loading": {op: 0 for op in OPERATIONS},
    "error": None,
    "search_results": [],
}


def _unwrap(payload: Any) -> Any:
    # API responses may wrap the entity as {"data": ...}
    if isinstance(payload, dict) and "data" in payload and isinstance(payload["data"], (dict, list)):
        return payload["data"]
    return payload


def _as_count(value: Any, fallback: int) -> int:
    # Server payloads are opaque; counts may be missing, null or strings
    if isinstance(value, bool):
        return fallback
    try:
        return max(0, int(value))
    except (TypeError, ValueError, OverflowError):
        return fallback


def _total_pages(total: Any, page_size: Any) -> int:
    total, page_size = _as_count(total, 0), _as_count(page_size, 0)
    return math.ceil(total / page_size) if page_size > 0 else 0


def _with_loading(state: Dict[str, Any], op: str, delta: int) -> Dict[str, Any]:
    loading = dict(state["loading"])
    loading[op] = max(0, loading.get(op, 0) + delta)
    return {**state, "loading": loading}


def _matches(patient: Mapping[str, Any], term: str) -> bool:
    for field in ("firstName", "lastName", "mrn", "email"):
        value = patient.get(field)
        if isinstance(value, str) and term in value.lower():
            return True
    return False


def _patient_succeeded(state: Dict[str, Any], op: str, payload: Any) -> Dict[str, Any]:
    if op == "fetch":
        body = payload
        if isinstance(body, dict):
            items = body.get("patients", body.get("data"))
            items = items if isinstance(items, list) else []
            pagination = body.get("pagination") if isinstance(body.get("pagination"), dict) else {}
            total = _as_count(body.get("total", pagination.get("total")), len(items))
        else:
            items = body if isinstance(body, list) else []
            total = len(items)
        return {
            **state,
            "patients": list(items),
            "total": total,
            "total_pages": _total_pages(total, state["page_size"]),
        }

    if op == "create":
        patient = _unwrap(payload)
        if not isinstance(patient, dict):
            return state
        total = _as_count(state["total"], 0) + 1
        return {
            **state,
            "patients": [patient] + state["patients"],
            "total": total,
            "total_pages": _total_pages(total, state["page_size"]),
        }

    if op == "update":
        patient = _unwrap(payload)
        if not isinstance(patient, dict) or "id" not in patient:
            return state
        pid = patient["id"]
        patients = [patient if p.get("id") == pid else p for p in state["patients"]]
        selected = state["selected"]
        if isinstance(selected, dict) and selected.get("id") == pid:
            selected = patient
        return {**state, "patients": patients, "selected": selected}

    if op == "delete":
        pid = payload.get("id") if isinstance(payload, dict) else payload
        patients = [p for p in state["patients"] if p.get("id") != pid]
        total = _as_count(state["total"], len(state["patients"]))
        total = max(0, total - 1) if len(patients) < len(state["patients"]) else total
        selected = state["selected"]
        if isinstance(selected, dict) and selected.get("id") == pid:
            selected = None
        return {
            **state,
            "patients": patients,
            "total": total,
            "total_pages": _total_pages(total, state["page_size"]),
            "selected": selected,
        }

    return state


def patients_reducer(state: Optional[Dict[str, Any]], action: Action) -> Dict[str, Any]:
    if state is None:
        state = copy.deepcopy(PATIENTS_INITIAL)

    if action.type == REHYDRATE:
        # In-flight counters and errors from a previous run are meaningless now
        return {**state, "loading": {op: 0 for op in OPERATIONS}, "error": None}

    parsed = split_intent(action.type)
    if parsed is not None and parsed[0] == "patients" and parsed[1] in OPERATIONS:
        _, op, phase = parsed
        if phase == REQUESTED:
            return {**_with_loading(state, op, +1), "error": None}
        if phase == SUCCEEDED:
            return _patient_succeeded(_with_loading(state, op, -1), op, action.payload)
        if phase == FAILED:
            message = action.payload.get("message") if isinstance(action.payload, dict) else None
            return {**_with_loading(state, op, -1), "error": message or f"Failed to {op} patients"}

    if action.type == "patients/select":
        return {**state, "selected": action.payload}
    if action.type == "patients/setFilters":
        return {**state, "filters": {**state["filters"], **(action.payload or {})}}
    if action.type == "patients/setPagination":
        updated = {**state, **{k: v for k, v in (action.payload or {}).items() if k in ("page", "page_size")}}
        return {**updated, "total_pages": _total_pages(updated["total"], updated["page_size"])}
    if action.type == "patients/search":
        term = (action.payload or "").lower()
        if not term:
            return {**state, "search_results": []}
        return {**state, "search_results": [p for p in state["patients"] if _matches(p, term)]}
    if action.type == "patients/clearSearch":
        return {**state, "search_results": [], "filters": {**state["filters"], "search": ""}}
    if action.type == "patients/clearError":
        return {**state, "error": None}
    return state


# -------- config --------
CONFIG_INITIAL: Dict[str, Any] = {
    "country": None,
    "state": None,
    "locale": "en",
    "preferences": {},
}


def config_reducer(state: Optional[Dict[str, Any]], action: Action) -> Dict[str, Any]:
    if state is None:
        state = copy.deepcopy(CONFIG_INITIAL)
    if action.type == "config/update":
        return {**state, **(action.payload or {})}
    if action.type == "config/setPreference":
        key, value = action.payload
        return {**state, "preferences": {**state["preferences"], key: value}}
    if action.type == "config/reset":
        return copy.deepcopy(CONFIG_INITIAL)
    return state


# -------- audit --------
def audit_reducer(state: Optional[Dict[str, Any]], action: Action) -> Dict[str, Any]:
    """Bounded trail of intent and terminal actions. Never persisted by default."""
    if state is None:
        state = {"entries": []}
    if action.type == "audit/clear":
        return {"entries": []}
    if split_intent(action.type) is None:
        return state
    entry = {
        "type": action.type,
        "error": action.error,
        "timestamp": action.meta.get("timestamp"),
    }
    entries: List[Dict[str, Any]] = state["entries"] + [entry]
    return {"entries": entries[-MAX_AUDIT_ENTRIES:]}


def default_reducers() -> Dict[str, Reducer]:
    return {
        "patients": patients_reducer,
        "config": config_reducer,
        "audit": audit_reducer,
    }


__all__ = [
    "Reducer",
    "PATIENTS_INITIAL",
    "CONFIG_INITIAL",
    "patients_reducer",
    "config_reducer",
    "audit_reducer",
    "default_reducers",
]
