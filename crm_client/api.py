"""
Async HTTP client for the leads API.

Every non-2xx response is turned back into an `AppError` from its
`{"error": {...}}` body, and transport failures (connection refused, DNS,
timeouts) become NETWORK_ERROR, so callers handle a single exception type.

Reads are retried with backoff when the failure is retryable. Writes are
sent once: a POST that timed out may still have been applied.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

import httpx

from crm_client.retry import DEFAULT_MAX_ATTEMPTS, retry_if_retryable
from domain.errors import AppError

logger = logging.getLogger(__name__)

TokenSource = Union[str, Callable[[], Optional[str]]]


def _query(params: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    if not params:
        return {}
    return {key: str(value) for key, value in params.items() if value is not None and value != ""}


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


class LeadsApi:
    def __init__(
        self,
        base_url: str,
        access_token: TokenSource,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_base_delay: float = 1.0,
    ) -> None:
        self._access_token = access_token
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None
        self._max_attempts = max_attempts
        self._retry_base_delay = retry_base_delay

    async def __aenter__(self) -> "LeadsApi":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        token = self._access_token() if callable(self._access_token) else self._access_token
        if not token:
            raise AppError.authentication("Not authenticated")
        return {"Authorization": f"Bearer {token}"}

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TransportError as exc:
            logger.warning("Request %s %s failed: %s", method, path, exc)
            raise AppError.network() from exc

        if response.is_success:
            return response
        raise AppError.from_wire(response.status_code, _error_body(response))

    async def _read(self, path: str, params: Optional[Mapping[str, Any]] = None) -> httpx.Response:
        return await retry_if_retryable(
            lambda: self._send("GET", path, params=_query(params)),
            max_attempts=self._max_attempts,
            base_delay=self._retry_base_delay,
        )

    # Leads

    async def list_leads(self, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return (await self._read("/api/leads", params)).json()

    async def search_leads(self, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return (await self._read("/api/leads/search", params)).json()

    async def get_lead(self, lead_id: str) -> Dict[str, Any]:
        return (await self._read(f"/api/leads/{lead_id}")).json()

    async def create_lead(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        return (await self._send("POST", "/api/leads", json=dict(data))).json()

    async def update_lead(self, lead_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        return (await self._send("PATCH", f"/api/leads/{lead_id}", json=dict(data))).json()

    async def delete_lead(self, lead_id: str) -> None:
        await self._send("DELETE", f"/api/leads/{lead_id}")

    async def import_leads(self, filename: str, content: bytes) -> Dict[str, Any]:
        response = await self._send("POST", "/api/leads/import", files={"file": (filename, content)})
        return response.json()

    async def export_leads(self, export_format: str = "csv") -> Tuple[str, bytes]:
        """Returns (filename, content)."""
        response = await self._read("/api/leads/export", {"format": export_format})
        disposition = response.headers.get("content-disposition", "")
        filename = f"leads-export.{export_format}"
        if "filename=" in disposition:
            filename = disposition.split("filename=", 1)[1].strip().strip('"')
        return filename, response.content

    # Interactions

    async def list_interactions(self, lead_id: str) -> Dict[str, Any]:
        return (await self._read("/api/interactions", {"lead_id": lead_id})).json()

    async def create_interaction(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        return (await self._send("POST", "/api/interactions", json=dict(data))).json()


__all__ = ["LeadsApi"]
