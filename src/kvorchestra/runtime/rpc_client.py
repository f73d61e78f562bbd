"""
RPC client for calling the remote store.

Makes POST {endpoint}/v1/projects/{projectId}:{method} calls with JSON
request payloads.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Generator, Optional, Protocol, Union

import httpx
from pydantic import BaseModel

from ..core.config import ClientConfig
from ..core.errors import RpcError

logger = logging.getLogger(__name__)

RpcRequest = Union[BaseModel, dict[str, Any]]


class CancellableCall:
    """
    Handle on an in-flight RPC.

    Awaiting the handle returns the response; cancel() aborts the underlying
    call. Created eagerly, so the call starts running as soon as the handle
    exists.
    """

    def __init__(self, call: Awaitable[dict[str, Any]]):
        self._task: asyncio.Future = asyncio.ensure_future(call)

    def cancel(self) -> bool:
        return self._task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    def done(self) -> bool:
        return self._task.done()

    def __await__(self) -> Generator[Any, None, dict[str, Any]]:
        return self._task.__await__()


class RpcClient(Protocol):
    """Transport consumed by the request layer."""

    async def invoke(
        self,
        method: str,
        request: RpcRequest,
        call_options: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]: ...

    def stream(
        self,
        method: str,
        request: RpcRequest,
        call_options: Optional[dict[str, Any]] = None,
    ) -> CancellableCall: ...


def encode_request(request: RpcRequest) -> dict[str, Any]:
    """JSON payload for a wire model or an already-encoded dict."""
    if isinstance(request, BaseModel):
        return request.model_dump(mode="json", by_alias=True, exclude_none=True)
    return request


class HttpRpcClient:
    """
    HTTP client for the store's JSON API.

    Usage:
        client = HttpRpcClient(ClientConfig(project_id="my-project"))
        response = await client.invoke("lookup", request)
    """

    def __init__(
        self,
        config: ClientConfig,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize RPC client.

        Args:
            config: Endpoint, timeout and credentials
            http_client: Optional shared HTTP client
        """
        self.config = config
        self._client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._client

    async def close(self):
        """Close the HTTP client if we own it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _headers(self, project_id: str) -> dict[str, str]:
        headers = {"x-goog-request-params": f"project_id={project_id}"}
        if self.config.access_token:
            headers["Authorization"] = f"Bearer {self.config.access_token}"
        return headers

    async def invoke(
        self,
        method: str,
        request: RpcRequest,
        call_options: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Call one RPC method.

        Args:
            method: RPC name (lookup, runQuery, commit, ...)
            request: Wire model or JSON payload; must carry projectId
            call_options: Per-call "timeout" (seconds) and extra "headers"

        Returns:
            Decoded JSON response

        Raises:
            RpcError: If the service returns an error or is unreachable
        """
        client = await self._get_client()
        call_options = call_options or {}

        payload = encode_request(request)
        project_id = payload.get("projectId") or self.config.project_id
        if not project_id:
            raise RpcError(method=method, status_code=0, message="No project id configured")

        url = f"{self.config.api_endpoint.rstrip('/')}/v1/projects/{project_id}:{method}"
        headers = self._headers(project_id)
        headers.update(call_options.get("headers") or {})

        logger.debug(f"POST {url}")
        try:
            response = await client.post(
                url,
                json=payload,
                headers=headers,
                timeout=call_options.get("timeout", self.config.timeout),
            )
        except httpx.RequestError as e:
            raise RpcError(method=method, status_code=0, message=str(e))

        if response.status_code != 200:
            details: dict[str, Any] = {}
            try:
                details = response.json().get("error", {})
            except ValueError:
                pass
            raise RpcError(
                method=method,
                status_code=response.status_code,
                message=details.get("message") or response.text,
                details=details,
            )

        return response.json()

    def stream(
        self,
        method: str,
        request: RpcRequest,
        call_options: Optional[dict[str, Any]] = None,
    ) -> CancellableCall:
        """Start a call and return a handle that can cancel it."""
        return CancellableCall(self.invoke(method, request, call_options))
