from __future__ import annotations

from typing import Any, Dict, Optional

from common.patients_api import PatientsApi

from .actions import intent_types
from .effects import EffectCoordinator, Saga, intent_worker


def patients_saga(api: PatientsApi) -> Saga:
    """Watch every patients intent and run the matching API call."""

    async def fetch(payload: Optional[Dict[str, Any]]) -> Any:
        payload = payload or {}
        return await api.fetch_patients(
            page=payload.get("page"),
            page_size=payload.get("page_size"),
            filters=payload.get("filters"),
        )

    async def create(payload: Dict[str, Any]) -> Any:
        return await api.create_patient(payload)

    async def update(payload: Dict[str, Any]) -> Any:
        patient_id = payload["id"]
        patient = payload.get("patient") or {k: v for k, v in payload.items() if k != "id"}
        result = await api.update_patient(patient_id, patient)
        # 204 from the API: echo what was sent
        return result if result is not None else {"id": patient_id, **patient}

    async def delete(payload: Any) -> Any:
        patient_id = payload["id"] if isinstance(payload, dict) else payload
        await api.delete_patient(patient_id)
        return patient_id

    def saga(effects: EffectCoordinator) -> None:
        for operation, call in (("fetch", fetch), ("create", create), ("update", update), ("delete", delete)):
            effects.take_every(
                intent_types("patients", operation).requested,
                intent_worker("patients", operation, call),
            )

    return saga


def root_saga(*sagas: Saga) -> Saga:
    def saga(effects: EffectCoordinator) -> None:
        for child in sagas:
            child(effects)

    return saga


__all__ = ["patients_saga", "root_saga"]
