"""
REST client for the CRM application's attendance API.
"""

from typing import Any, Optional

import httpx

from zapdesk.errors import DatastoreError

DEFAULT_API_BASE_URL = "http://localhost:5000"


class HttpClient:
    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE_URL,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=f"{self._base_url}/api",
            headers={"User-Agent": "zapdesk/0.1.0", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    @staticmethod
    def _unwrap(json_data: Any) -> Any:
        """Unwrap `{ "success": true, "data": <actual_data> }` responses."""
        if isinstance(json_data, dict) and "data" in json_data and ("success" in json_data or "status" in json_data):
            return json_data["data"]
        return json_data

    async def request(self, method: str, path: str, body: Optional[dict[str, Any]] = None) -> Any:
        try:
            resp = await self._client.request(method, path, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise DatastoreError(f"{method} {path} failed: {e}")
        if resp.status_code >= 400:
            raise DatastoreError(
                f"{method} {path} -> HTTP {resp.status_code}: {resp.text[:200]}",
                details={"status_code": resp.status_code},
            )
        if not resp.content:
            return None
        try:
            return self._unwrap(resp.json())
        except ValueError:
            raise DatastoreError(f"{method} {path} returned non-JSON body: {resp.text[:200]}")

    async def get(self, path: str) -> Any:
        return await self.request("GET", path)

    async def post(self, path: str, body: Optional[dict[str, Any]] = None) -> Any:
        return await self.request("POST", path, body)

    async def put(self, path: str, body: Optional[dict[str, Any]] = None) -> Any:
        return await self.request("PUT", path, body)

    async def close(self) -> None:
        await self._client.aclose()
