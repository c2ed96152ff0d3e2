"""Rancher v3 API client for importing clusters."""

from typing import Any, Optional

import aiohttp


class RancherAPIError(Exception):
    """Rancher API specific errors."""

    def __init__(
        self, status_code: int, message: str, details: Optional[dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.message = message
        self.details = details or {}
        super().__init__(f"Rancher API Error {status_code}: {message}")


class RancherClient:
    """Async HTTP client for the Rancher management API."""

    def __init__(self, rancher_url: str, token: str, timeout: float = 30.0):
        self.rancher_url = rancher_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._headers = {"Authorization": f"Bearer {token}"}
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        self._session = aiohttp.ClientSession(
            timeout=self.timeout, headers=self._headers
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._session:
            await self._session.close()

    async def create_imported_cluster(
        self, name: str, labels: Optional[dict[str, str]] = None
    ) -> dict[str, Any]:
        """Create a cluster record that an existing cluster registers into."""
        payload = {"type": "cluster", "name": name, "labels": labels or {}}
        async with self._session.post(
            f"{self.rancher_url}/v3/clusters", json=payload
        ) as response:
            return await self._handle_response(response)

    async def create_registration_token(self, cluster_id: str) -> dict[str, Any]:
        """Create the registration token holding the import manifest URL."""
        payload = {"type": "clusterRegistrationToken", "clusterId": cluster_id}
        async with self._session.post(
            f"{self.rancher_url}/v3/clusterregistrationtokens", json=payload
        ) as response:
            return await self._handle_response(response)

    async def _handle_response(
        self, response: aiohttp.ClientResponse
    ) -> dict[str, Any]:
        try:
            data = await response.json(content_type=None)
        except ValueError:
            data = {"message": await response.text()}

        if 200 <= response.status < 300:
            return data
        elif response.status == 404:
            raise RancherAPIError(404, "Resource not found", data)
        elif response.status in (401, 403):
            raise RancherAPIError(response.status, "Unauthorized", data)
        elif response.status == 422:
            raise RancherAPIError(422, "Invalid request", data)
        else:
            raise RancherAPIError(response.status, f"HTTP {response.status}", data)
