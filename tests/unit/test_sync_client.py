from __future__ import annotations

import json
from typing import Callable, List

import httpx
import pytest

from common.credentials import AuthToken, CredentialSlot
from common.patients_api import PatientsApi
from common.sync_client import (
    ClientError,
    InvalidResponse,
    RetryBudgetExhausted,
    ServerError,
    SyncClient,
    TransportError,
    Unauthorized,
    normalize_error,
)


def _client(handler: Callable[[httpx.Request], httpx.Response], sleeps: List[float], **kwargs) -> SyncClient:
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    kwargs.setdefault("base_url", "http://api.test/api")
    return SyncClient(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        sleep=fake_sleep,
        **kwargs,
    )


async def test_linear_backoff_then_success():
    calls = {"count": 0}
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] <= 3:
            return httpx.Response(500, json={"message": "boom"})
        return httpx.Response(200, json={"ok": True})

    client = _client(handler, sleeps, retry_delay=0.5, max_retries=3)
    assert await client.get("/status") == {"ok": True}
    assert calls["count"] == 4
    assert sleeps == [0.5, 1.0, 1.5]


async def test_retry_budget_exhausted():
    calls = {"count": 0}
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(503)

    client = _client(handler, sleeps, retry_delay=1.0, max_retries=2)
    with pytest.raises(RetryBudgetExhausted) as ei:
        await client.get("/patients")

    assert calls["count"] == 3
    assert sleeps == [1.0, 2.0]
    err = ei.value.to_error()
    assert err.code == "RETRY_BUDGET_EXHAUSTED"
    assert err.status == 503
    assert err.details["attempts"] == 3
    assert err.details["last_error"]["code"] == "SERVER_ERROR"


async def test_zero_retries_means_single_attempt():
    calls = {"count": 0}
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(502)

    client = _client(handler, sleeps, max_retries=0)
    with pytest.raises(RetryBudgetExhausted):
        await client.get("/patients")
    assert calls["count"] == 1
    assert sleeps == []


async def test_retry_disabled_surfaces_server_error():
    sleeps: List[float] = []
    client = _client(lambda request: httpx.Response(500), sleeps, enable_retry=False)
    with pytest.raises(ServerError):
        await client.get("/patients")
    assert sleeps == []


async def test_unauthorized_clears_credentials_without_retry():
    calls = {"count": 0, "auth": None}
    sleeps: List[float] = []
    notified: List[bool] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        calls["auth"] = request.headers.get("Authorization")
        return httpx.Response(401, json={"message": "expired"})

    slot = CredentialSlot()
    await slot.store("tok-123")
    client = _client(handler, sleeps, credentials=slot, on_unauthorized=lambda: notified.append(True))

    with pytest.raises(Unauthorized) as ei:
        await client.get("/patients")

    assert calls["count"] == 1
    assert calls["auth"] == "Bearer tok-123"
    assert sleeps == []
    assert slot.get() is None
    assert notified == [True]
    assert ei.value.to_error().details == {"message": "expired"}


async def test_failing_unauthorized_callback_still_raises_unauthorized():
    def explode() -> None:
        raise RuntimeError("callback failed")

    client = _client(lambda request: httpx.Response(401), [], on_unauthorized=explode)
    with pytest.raises(Unauthorized):
        await client.get("/patients")


async def test_client_errors_are_not_retried():
    calls = {"count": 0}
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(404, json={"message": "no such patient"})

    client = _client(handler, sleeps)
    with pytest.raises(ClientError) as ei:
        await client.get("/patients/42")
    assert calls["count"] == 1
    assert ei.value.status == 404


async def test_rate_limit_is_retried():
    calls = {"count": 0}
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(429)
        return httpx.Response(200, json=[1, 2])

    client = _client(handler, sleeps, retry_delay=2.0)
    assert await client.get("/patients") == [1, 2]
    assert sleeps == [2.0]


async def test_transport_failures_are_retried():
    calls = {"count": 0}
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        if calls["count"] == 2:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json={"ok": True})

    client = _client(handler, sleeps)
    assert await client.get("/ping") == {"ok": True}
    assert sleeps == [1.0, 2.0]


async def test_transport_failure_exhausts_budget():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler, [], max_retries=1)
    with pytest.raises(RetryBudgetExhausted) as ei:
        await client.get("/ping")
    assert isinstance(ei.value.last_error, TransportError)


async def test_empty_and_non_json_bodies():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(200, text="pong")

    client = _client(handler, [])
    assert await client.delete("/patients/1") is None
    assert await client.get("/ping") == "pong"


async def test_malformed_json_is_invalid_response():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200, content=b"{oops", headers={"content-type": "application/json"})

    client = _client(handler, [])
    with pytest.raises(InvalidResponse):
        await client.get("/patients")
    assert calls["count"] == 1


async def test_url_building_and_structured_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": "7"})

    slot = CredentialSlot()
    await slot.store(AuthToken(access_token="abc", token_type="Token"))
    client = _client(handler, [], base_url="http://api.test/api/", credentials=slot)

    assert await client.post("/patients", {"firstName": "Ada"}) == {"id": "7"}
    assert seen["url"] == "http://api.test/api/patients"
    assert seen["auth"] == "Token abc"
    assert seen["body"] == {"firstName": "Ada"}


async def test_patients_api_query_parameters():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"patients": []})

    api = PatientsApi(_client(handler, []))
    await api.fetch_patients(page=2, page_size=10, filters={"search": "ada", "status": ""})
    assert seen["path"] == "/api/patients"
    assert seen["params"] == {"page": "2", "pageSize": "10", "search": "ada"}


async def test_patients_api_lookup_and_search_endpoints():
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/search"):
            return httpx.Response(200, json={"patients": [{"id": "4", "lastName": "Lovelace"}]})
        return httpx.Response(200, json={"data": {"id": "4"}})

    api = PatientsApi(_client(handler, []))
    assert await api.get_patient("4") == {"data": {"id": "4"}}
    found = await api.search_patients("love lace")

    assert found == {"patients": [{"id": "4", "lastName": "Lovelace"}]}
    assert [(r.method, r.url.path) for r in requests] == [
        ("GET", "/api/patients/4"),
        ("GET", "/api/patients/search"),
    ]
    assert requests[1].url.params["q"] == "love lace"


def test_normalize_unknown_exception():
    err = normalize_error(KeyError("id"))
    assert err.code == "UNKNOWN_ERROR"
    assert err.kind == "KeyError"
    assert err.status is None


def test_negative_retry_count_rejected():
    with pytest.raises(ValueError):
        SyncClient(max_retries=-1)
