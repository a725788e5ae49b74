"""
Glances HTTP Client

Client for the Glances REST API (v4) running on each tracked server. It is
the telemetry source for the control loop.
"""

import asyncio
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

SNAPSHOT_ENDPOINTS = ["cpu", "mem", "fs", "network", "uptime", "load"]


class GlancesClient:
    """HTTP client for the Glances API with short timeouts"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "GlancesClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def get_endpoint(self, endpoint: str) -> Any:
        """Get data from a single Glances API endpoint"""
        url = f"/api/4/{endpoint.lstrip('/')}"
        try:
            logger.debug(f"Making request to {self.base_url}{url}")
            response = await self.client.get(url)
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            logger.warning(f"HTTP error {e.response.status_code} for {self.base_url}{url}")
            raise
        except httpx.RequestError as e:
            logger.warning(f"Request error for {self.base_url}{url}: {e!r}")
            raise

    async def get_multiple_endpoints(self, endpoints: list[str]) -> dict[str, Any]:
        """Get data from multiple endpoints in parallel.

        A failed endpoint maps to ``None`` instead of failing the batch.
        """
        tasks = []
        for endpoint in endpoints:
            task = asyncio.create_task(self.get_endpoint(endpoint), name=f"glances_{endpoint}")
            tasks.append((endpoint, task))

        results: dict[str, Any] = {}
        for endpoint, task in tasks:
            try:
                results[endpoint] = await task
            except (httpx.HTTPError, ValueError) as e:
                logger.info(f"Failed to get data from {endpoint}: {e!r}")
                results[endpoint] = None

        return results

    async def close(self) -> None:
        """Close HTTP client connections"""
        await self.client.aclose()
