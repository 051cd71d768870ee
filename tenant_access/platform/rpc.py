"""
Minimal JSON remote-procedure client shared by the HTTP entitlement source
and the HTTP session store.

Each procedure is POST {base_url}/rpc/{name} with a JSON object body and a
JSON response. Transport problems and HTTP error statuses raise
RpcTransportError; bodies that are not JSON raise RpcResponseError.
Callers translate these into their own error types.
"""

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class RpcTransportError(Exception):
    """Remote procedure unreachable, timed out, or answered with an HTTP error."""

    def __init__(self, procedure: str, detail: str, status_code: Optional[int] = None):
        self.procedure = procedure
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"{procedure}: {detail}")


class RpcResponseError(Exception):
    """Remote procedure answered 2xx with a body that is not JSON."""

    def __init__(self, procedure: str, detail: str):
        self.procedure = procedure
        self.detail = detail
        super().__init__(f"{procedure}: {detail}")


class RpcClient:
    """
    Thin wrapper over httpx.AsyncClient.

    The HTTP client is created lazily, or passed in for testing.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(timeout_seconds)
        self._api_key = api_key
        self._client = client
        self._owns_client = client is None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["apikey"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def call(self, procedure: str, payload: Dict[str, Any]) -> Any:
        """Invoke a remote procedure and return its decoded JSON body."""
        client = await self._get_client()
        url = f"{self.base_url}/rpc/{procedure}"

        try:
            response = await client.post(url, json=payload, headers=self._headers())
        except httpx.HTTPError as e:
            raise RpcTransportError(procedure, f"{type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            raise RpcTransportError(
                procedure,
                f"HTTP {response.status_code}",
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise RpcResponseError(procedure, "response body is not JSON") from e

    async def close(self):
        """Close HTTP client if this wrapper created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
