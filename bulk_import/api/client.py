from __future__ import annotations

from typing import Any, Protocol

import httpx

from ..models.config_models import ApiConfig

"""Async HTTP client for the backend persistence API.

One endpoint per entity collection: ``POST /<collection>``,
``PUT /<collection>/<id>``, ``DELETE /<collection>/<id>`` and
``GET /<collection>`` for the reference snapshot.

Failures are raised as ``BackendError`` carrying the HTTP status and whether
a retry may help (network errors, 408, 429 and 5xx are transient).
"""

__all__ = [
    "BackendError",
    "RecordStore",
    "BackendClient",
    "is_transient_status",
]

_TRANSIENT_STATUSES = frozenset({408, 429})


def is_transient_status(status_code: int | None) -> bool:
    if status_code is None:
        return True
    return status_code in _TRANSIENT_STATUSES or status_code >= 500


class BackendError(Exception):
    """A backend call failed."""

    def __init__(self, message: str, status_code: int | None = None, transient: bool | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.transient = is_transient_status(status_code) if transient is None else transient


class RecordStore(Protocol):
    """What the validation and commit layers need from the backend."""

    async def list_records(self, endpoint: str) -> list[dict[str, Any]]: ...

    async def create(self, endpoint: str, payload: dict[str, Any]) -> Any: ...

    async def update(self, endpoint: str, record_id: str, payload: dict[str, Any]) -> Any: ...

    async def delete(self, endpoint: str, record_id: str) -> Any: ...


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code}: {response.reason_phrase}"


def _unwrap(body: Any) -> Any:
    # Some endpoints wrap payloads as {"data": ...}
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


class BackendClient:
    """httpx-based RecordStore.

    Use as an async context manager, or call ``aclose()`` when done. A
    preconfigured ``httpx.AsyncClient`` may be injected (tests pass one built
    on ``httpx.MockTransport``); an injected client is not closed here.
    """

    def __init__(self, config: ApiConfig | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.config = config or ApiConfig()
        headers = {"Accept": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.config.base_url.rstrip("/"),
            timeout=httpx.Timeout(self.config.timeout_seconds),
            headers=headers,
        )

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise BackendError(f"Error de red: {e}") from e
        if response.is_error:
            raise BackendError(_error_message(response), status_code=response.status_code)
        if not response.content:
            return None
        try:
            return _unwrap(response.json())
        except ValueError:
            return response.text

    async def list_records(self, endpoint: str) -> list[dict[str, Any]]:
        body = await self._request("GET", endpoint)
        if not isinstance(body, list):
            return []
        return [item for item in body if isinstance(item, dict)]

    async def create(self, endpoint: str, payload: dict[str, Any]) -> Any:
        return await self._request("POST", endpoint, json=payload)

    async def update(self, endpoint: str, record_id: str, payload: dict[str, Any]) -> Any:
        return await self._request("PUT", f"{endpoint}/{record_id}", json=payload)

    async def delete(self, endpoint: str, record_id: str) -> Any:
        return await self._request("DELETE", f"{endpoint}/{record_id}")
