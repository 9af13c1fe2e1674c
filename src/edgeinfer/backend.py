"""HTTP client for the edge-inference backend API."""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from edgeinfer.device import measure_api_latency
from edgeinfer.errors import AuthenticationError, NotAuthenticatedError
from edgeinfer.observability import log_event
from edgeinfer.rag.models import KnowledgeBaseQueryResult, SyncResponse

LOGGER = logging.getLogger(__name__)


def error_detail(error: Exception) -> str:
    """Prefer the server's ``{"error": ...}`` message over the HTTP status text."""

    if isinstance(error, httpx.HTTPStatusError):
        try:
            payload = error.response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            detail = payload.get("error") or payload.get("message")
            if isinstance(detail, dict):
                detail = detail.get("message")
            if detail:
                return str(detail)
    return str(error)


class BackendClient:
    """Thin async wrapper over the backend endpoints used by the client."""

    def __init__(
        self,
        api_url: str,
        *,
        timeout: float = 30.0,
        register_timeout: float = 10.0,
        probe_timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self._register_timeout = register_timeout
        self._probe_timeout = probe_timeout
        self._http = httpx.AsyncClient(base_url=self.api_url, timeout=timeout, transport=transport)
        self._token: Optional[str] = None

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def authenticated(self) -> bool:
        return self._token is not None

    def _auth_headers(self) -> dict[str, str]:
        if self._token is None:
            raise NotAuthenticatedError("Not authenticated. Call initialize() first.")
        return {"Authorization": f"Bearer {self._token}"}

    async def _post(self, path: str, payload: dict[str, Any], **kwargs: Any) -> httpx.Response:
        response = await self._http.post(path, json=payload, headers=self._auth_headers(), **kwargs)
        response.raise_for_status()
        return response

    async def authenticate(self, api_key: str) -> str:
        try:
            response = await self._http.post("/api/auth/sdk", json={"apiKey": api_key})
            response.raise_for_status()
            token = response.json().get("token")
        except (httpx.HTTPError, ValueError) as error:
            raise AuthenticationError(f"auth failed: {error_detail(error)}") from error
        if not token:
            raise AuthenticationError("auth failed: response carried no token")
        self._token = str(token)
        log_event(LOGGER, "backend.auth.success")
        return self._token

    async def register_device(self, payload: dict[str, Any]) -> None:
        await self._post("/api/devices/register", payload, timeout=self._register_timeout)

    async def send_telemetry(self, device_id: str, metrics: list[dict[str, Any]]) -> None:
        await self._post(
            "/api/devices/telemetry",
            {"device_id": device_id, "metrics": metrics},
            timeout=self._register_timeout,
        )

    async def post_event(self, payload: dict[str, Any]) -> None:
        """Legacy per-event telemetry endpoint."""

        await self._post("/api/telemetry", payload)

    async def query_knowledge_base(
        self,
        knowledge_base_id: str,
        *,
        query: str,
        top_k: int,
        model_id: str,
    ) -> KnowledgeBaseQueryResult:
        response = await self._post(
            f"/api/rag/knowledge-bases/{quote(knowledge_base_id, safe='')}/query",
            {"query": query, "top_k": top_k, "model_id": model_id},
        )
        return KnowledgeBaseQueryResult.model_validate(response.json())

    async def sync_knowledge_base(
        self,
        knowledge_base_id: str,
        *,
        device_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> SyncResponse:
        payload: dict[str, Any] = {"device_id": device_id}
        if page > 1:
            payload["page"] = page
        if page_size is not None:
            payload["page_size"] = page_size
        response = await self._post(
            f"/api/rag/knowledge-bases/{quote(knowledge_base_id, safe='')}/sync",
            payload,
        )
        return SyncResponse.model_validate(response.json())

    async def measure_latency(self) -> int:
        return await measure_api_latency(self._http, self.api_url, timeout=self._probe_timeout)

    async def aclose(self) -> None:
        await self._http.aclose()


__all__ = ["BackendClient", "error_detail"]
