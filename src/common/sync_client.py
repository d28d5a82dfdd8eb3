from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from pydantic import BaseModel

from .config import DEFAULT_API_BASE_URL, Settings
from .credentials import CredentialSlot


logger = logging.getLogger(__name__)


class ApiError(BaseModel):
    """Normalized terminal error handed to the effect layer; never the raw transport shape."""

    code: str
    kind: str
    message: str
    status: Optional[int] = None
    timestamp: str
    details: Optional[Dict[str, Any]] = None


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds")


class SyncError(RuntimeError):
    """Base error for the sync client."""

    code = "SYNC_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details
        self.timestamp = _now_iso()

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_error(self) -> ApiError:
        return ApiError(
            code=self.code,
            kind=self.kind,
            message=self.message,
            status=self.status,
            timestamp=self.timestamp,
            details=self.details,
        )


class TransportError(SyncError):
    """No response at all: connection failure or per-attempt timeout."""

    code = "TRANSPORT_ERROR"
    retryable = True


class ServerError(SyncError):
    """5xx response."""

    code = "SERVER_ERROR"
    retryable = True


class RateLimited(SyncError):
    """429 response."""

    code = "RATE_LIMITED"
    retryable = True


class ClientError(SyncError):
    """Any other 4xx response; surfaced to the caller as-is."""

    code = "CLIENT_ERROR"


class Unauthorized(SyncError):
    """401 response; credentials have already been cleared when this is raised."""

    code = "UNAUTHORIZED"


class InvalidResponse(SyncError):
    """2xx response whose JSON body could not be parsed."""

    code = "INVALID_RESPONSE"


class RetryBudgetExhausted(SyncError):
    """Retryable failures persisted past the configured retry count."""

    code = "RETRY_BUDGET_EXHAUSTED"

    def __init__(self, message: str, *, last_error: SyncError, attempts: int) -> None:
        details = {
            "attempts": attempts,
            "last_error": {"code": last_error.code, "message": last_error.message},
        }
        if last_error.details:
            details["last_error"]["details"] = last_error.details
        super().__init__(message, status=last_error.status, details=details)
        self.last_error = last_error


def normalize_error(exc: BaseException) -> ApiError:
    """Map any exception onto the `ApiError` shape."""
    if isinstance(exc, SyncError):
        return exc.to_error()
    return ApiError(
        code="UNKNOWN_ERROR",
        kind=type(exc).__name__,
        message=str(exc) or type(exc).__name__,
        timestamp=_now_iso(),
    )


@dataclass
class SyncRequest:
    """One in-flight call, including its retries."""

    method: str
    path: str
    body: Any = None
    params: Optional[Dict[str, Any]] = None
    retry_count: int = 0
    started_at: float = field(default_factory=time.monotonic)


def _response_details(resp: httpx.Response) -> Optional[Dict[str, Any]]:
    if not resp.content:
        return None
    try:
        body = resp.json()
    except ValueError:
        return {"body": resp.text[:500]}
    return body if isinstance(body, dict) else {"body": body}


class SyncClient:
    """
    Async HTTP client for the remote API with retry and credential handling.

    Notes
    - Per request: INIT -> SENT -> (SUCCESS | RETRY -> SENT | FAILURE).
    - No response, 5xx and 429 are retried with linear backoff
      (`retry_delay * attempt`) up to `max_retries` times; other 4xx are not.
    - 401 clears the credential slot and fails immediately as `Unauthorized`.
    - The timeout applies per attempt; a timeout counts as a transport failure.
    - Every failure is raised as a `SyncError` subclass (see `to_error()`).
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        enable_retry: bool = True,
        credentials: Optional[CredentialSlot] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_unauthorized: Optional[Callable[[], Any]] = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._enable_retry = enable_retry
        self._credentials = credentials
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=self._timeout,
            headers={"Content-Type": "application/json"},
        )
        self._sleep = sleep
        self._on_unauthorized = on_unauthorized

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        credentials: Optional[CredentialSlot] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "SyncClient":
        return cls(
            base_url=settings.api_base_url,
            timeout=settings.api_timeout,
            max_retries=settings.api_retries,
            retry_delay=settings.api_retry_delay,
            credentials=credentials,
            client=client,
        )

    @property
    def credentials(self) -> Optional[CredentialSlot]:
        return self._credentials

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "SyncClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # --------------- Public API ---------------
    async def request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Perform one call (with retries) and return the parsed payload."""
        req = SyncRequest(method=method.upper(), path=path, body=body, params=params)
        while True:
            try:
                result = await self._attempt(req)
            except SyncError as exc:
                if not (exc.retryable and self._enable_retry):
                    logger.warning("%s %s failed: %s (%s)", req.method, req.path, exc.message, exc.code)
                    raise
                if req.retry_count >= self._max_retries:
                    logger.warning(
                        "%s %s failed after %d retries: %s", req.method, req.path, req.retry_count, exc.message
                    )
                    raise RetryBudgetExhausted(
                        f"{req.method} {req.path} failed after {req.retry_count} retries",
                        last_error=exc,
                        attempts=req.retry_count + 1,
                    ) from exc
                req.retry_count += 1
                delay = self._retry_delay * req.retry_count
                logger.info(
                    "Retrying %s %s (attempt %d) in %.2fs: %s",
                    req.method, req.path, req.retry_count, delay, exc.message,
                )
                await self._sleep(delay)
                continue
            logger.debug(
                "%s %s succeeded in %.0fms", req.method, req.path, (time.monotonic() - req.started_at) * 1000
            )
            return result

    async def get(self, path: str, *, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Any = None) -> Any:
        return await self.request("POST", path, body=body)

    async def put(self, path: str, body: Any = None) -> Any:
        return await self.request("PUT", path, body=body)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    # --------------- Internal ---------------
    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._credentials is not None:
            auth = self._credentials.authorization_header()
            if auth:
                headers["Authorization"] = auth
        return headers

    async def _attempt(self, req: SyncRequest) -> Any:
        try:
            resp = await self._client.request(
                req.method,
                self._url(req.path),
                json=req.body,
                params=req.params,
                headers=self._headers(),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransportError(f"Request timed out after {self._timeout}s") from exc
        except httpx.TransportError as exc:
            raise TransportError(f"Network error: {exc}") from exc

        status = resp.status_code
        if 200 <= status < 300:
            return self._parse(resp)
        if status == 401:
            await self._handle_unauthorized()
            raise Unauthorized("Authentication required", status=status, details=_response_details(resp))
        if status == 429:
            raise RateLimited("Rate limited by server", status=status, details=_response_details(resp))
        if status >= 500:
            raise ServerError(f"HTTP {status} from server", status=status, details=_response_details(resp))
        raise ClientError(f"HTTP {status} from server", status=status, details=_response_details(resp))

    @staticmethod
    def _parse(resp: httpx.Response) -> Any:
        if resp.status_code == 204 or not resp.content:
            return None
        content_type = resp.headers.get("content-type", "")
        if "json" not in content_type:
            return resp.text
        try:
            return resp.json()
        except ValueError as exc:
            raise InvalidResponse("Failed to parse JSON response", status=resp.status_code) from exc

    async def _handle_unauthorized(self) -> None:
        if self._credentials is not None:
            await self._credentials.clear()
        if self._on_unauthorized is not None:
            try:
                outcome = self._on_unauthorized()
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception:
                # The 401 itself is still surfaced as Unauthorized
                logger.exception("on_unauthorized callback failed")


__all__ = [
    "ApiError",
    "SyncClient",
    "SyncRequest",
    "SyncError",
    "TransportError",
    "ServerError",
    "RateLimited",
    "ClientError",
    "Unauthorized",
    "InvalidResponse",
    "RetryBudgetExhausted",
    "normalize_error",
]
