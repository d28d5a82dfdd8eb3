from __future__ import annotations

from state.actions import REHYDRATE, intent_types
from state.models import Action
from state.slices import (
    CONFIG_INITIAL,
    PATIENTS_INITIAL,
    audit_reducer,
    config_reducer,
    patients_reducer,
)


FETCH = intent_types("patients", "fetch")
UPDATE = intent_types("patients", "update")
DELETE = intent_types("patients", "delete")
CREATE = intent_types("patients", "create")


def _loaded(*patients):
    state = patients_reducer(None, Action("@@store/INIT"))
    return patients_reducer(state, Action(FETCH.succeeded, {"patients": list(patients), "total": len(patients)}))


def test_initial_state_is_a_fresh_copy():
    a = patients_reducer(None, Action("x"))
    a["filters"]["search"] = "mutated"
    assert patients_reducer(None, Action("x"))["filters"]["search"] == ""
    assert PATIENTS_INITIAL["filters"]["search"] == ""


def test_unknown_action_returns_same_object():
    state = patients_reducer(None, Action("x"))
    assert patients_reducer(state, Action("something/else")) is state
    assert config_reducer(CONFIG_INITIAL, Action("nope")) is CONFIG_INITIAL


def test_in_flight_counter_tracks_overlapping_requests():
    state = patients_reducer(None, Action("x"))
    state = patients_reducer(state, Action(FETCH.requested))
    state = patients_reducer(state, Action(FETCH.requested))
    assert state["loading"]["fetch"] == 2

    state = patients_reducer(state, Action(FETCH.succeeded, []))
    assert state["loading"]["fetch"] == 1
    state = patients_reducer(state, Action(FETCH.failed, {"message": "offline"}, error=True))
    assert state["loading"]["fetch"] == 0
    assert state["error"] == "offline"


def test_fetch_success_sets_list_and_pagination():
    state = _loaded({"id": "1"}, {"id": "2"})
    assert state["patients"] == [{"id": "1"}, {"id": "2"}]
    assert state["total"] == 2
    assert state["total_pages"] == 1


def test_fetch_success_tolerates_missing_or_malformed_counts():
    state = patients_reducer(None, Action("x"))
    state = patients_reducer(state, Action(FETCH.requested))
    state = patients_reducer(state, Action(FETCH.succeeded, {"patients": [{"id": "1"}], "total": None}))
    assert state["patients"] == [{"id": "1"}]
    assert state["total"] == 1
    assert state["loading"]["fetch"] == 0

    state = patients_reducer(state, Action(FETCH.succeeded, {"patients": None, "total": "41"}))
    assert state["patients"] == []
    assert state["total"] == 41
    assert state["total_pages"] == 3


def test_updates_for_different_ids_both_apply():
    state = _loaded({"id": "1", "name": "a"}, {"id": "2", "name": "b"})
    state = patients_reducer(state, Action(UPDATE.succeeded, {"id": "2", "name": "B"}))
    state = patients_reducer(state, Action(UPDATE.succeeded, {"data": {"id": "1", "name": "A"}}))
    assert state["patients"] == [{"id": "1", "name": "A"}, {"id": "2", "name": "B"}]


def test_create_and_delete():
    state = _loaded({"id": "1"})
    state = patients_reducer(state, Action("patients/select", {"id": "1"}))
    state = patients_reducer(state, Action(CREATE.succeeded, {"id": "2"}))
    assert [p["id"] for p in state["patients"]] == ["2", "1"]
    assert state["total"] == 2

    state = patients_reducer(state, Action(DELETE.succeeded, "1"))
    assert [p["id"] for p in state["patients"]] == ["2"]
    assert state["total"] == 1
    assert state["selected"] is None


def test_local_search_matches_names_case_insensitively():
    state = _loaded({"id": "1", "firstName": "Ada", "lastName": "Lovelace"}, {"id": "2", "firstName": "Alan"})
    state = patients_reducer(state, Action("patients/search", "love"))
    assert [p["id"] for p in state["search_results"]] == ["1"]
    state = patients_reducer(state, Action("patients/clearSearch"))
    assert state["search_results"] == []


def test_rehydrate_resets_transient_fields():
    state = patients_reducer(None, Action("x"))
    state = patients_reducer(state, Action(FETCH.requested))
    state = {**state, "error": "stale"}
    state = patients_reducer(state, Action(REHYDRATE, {}))
    assert state["loading"]["fetch"] == 0
    assert state["error"] is None


def test_config_updates():
    state = config_reducer(None, Action("config/update", {"country": "KE"}))
    state = config_reducer(state, Action("config/setPreference", ("theme", "dark")))
    assert state["country"] == "KE"
    assert state["preferences"] == {"theme": "dark"}
    assert config_reducer(state, Action("config/reset")) == CONFIG_INITIAL


def test_audit_records_intents_only_and_is_bounded():
    state = audit_reducer(None, Action("x"))
    assert audit_reducer(state, Action("patients/select")) is state

    for _ in range(510):
        state = audit_reducer(state, Action(FETCH.requested))
    assert len(state["entries"]) == 500
    assert state["entries"][-1]["type"] == FETCH.requested
