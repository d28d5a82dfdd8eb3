from __future__ import annotations

from typing import Any, Dict, Optional

from .sync_client import SyncClient


class PatientsApi:
    """
    Patient resource endpoints on top of `SyncClient`.

    Payloads are passed through untouched; the store treats them as opaque
    JSON values.
    """

    def __init__(self, client: SyncClient) -> None:
        self._client = client

    async def fetch_patients(
        self,
        *,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
        filters: Optional[Dict[str, Any]] = None,
    ) -> Any:
        params: Dict[str, Any] = {}
        if page is not None:
            params["page"] = page
        if page_size is not None:
            params["pageSize"] = page_size
        for k, v in (filters or {}).items():
            if v not in (None, ""):
                params[k] = v
        return await self._client.get("/patients", params=params or None)

    async def get_patient(self, patient_id: str) -> Any:
        return await self._client.get(f"/patients/{patient_id}")

    async def search_patients(self, query: str) -> Any:
        return await self._client.get("/patients/search", params={"q": query})

    async def create_patient(self, patient: Dict[str, Any]) -> Any:
        return await self._client.post("/patients", patient)

    async def update_patient(self, patient_id: str, patient: Dict[str, Any]) -> Any:
        return await self._client.put(f"/patients/{patient_id}", patient)

    async def delete_patient(self, patient_id: str) -> Any:
        return await self._client.delete(f"/patients/{patient_id}")
