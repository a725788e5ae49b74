"""
Provisioning API Client

HTTP client for the cloud compute API. Handles OAuth2 password-grant
authentication with token caching, and maps provider failures onto the
autoscaler's exception types.
"""

import asyncio
import logging
import time
from typing import Any
from uuid import uuid4

import httpx

from apps.backend.src.core.config import ProvisioningSettings, get_settings
from apps.backend.src.core.exceptions import ExternalServiceError, ServerNotFoundError

logger = logging.getLogger(__name__)

# Seconds subtracted from the advertised token lifetime
TOKEN_EXPIRY_BUFFER = 60


class ProvisioningClient:
    """Async client for instance lookup and resize calls"""

    def __init__(
        self,
        config: ProvisioningSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.client = httpx.AsyncClient(
            base_url=config.api_base_url.rstrip("/"),
            timeout=httpx.Timeout(config.request_timeout),
            headers={"User-Agent": "vps-autoscaler/1.0", "Accept": "application/json"},
            transport=transport,
        )
        self._access_token: str | None = None
        self._token_expiry: float = 0.0
        self._token_lock = asyncio.Lock()

    async def __aenter__(self) -> "ProvisioningClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _token_valid(self) -> bool:
        return self._access_token is not None and self._token_expiry > time.monotonic()

    async def _get_access_token(self) -> str:
        if self._token_valid():
            return self._access_token

        # Concurrent callers share one password grant
        async with self._token_lock:
            if self._token_valid():
                return self._access_token
            return await self._authenticate()

    async def _authenticate(self) -> str:
        form = {
            "grant_type": "password",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "username": self.config.api_user,
            "password": self.config.api_password,
        }
        try:
            response = await self.client.post(self.config.auth_url, data=form)
        except httpx.RequestError as e:
            raise ExternalServiceError(
                "provisioning_auth", f"Authentication request failed: {e!r}", operation="authenticate"
            ) from e

        payload = self._json(response)
        if response.status_code != 200 or "access_token" not in payload:
            description = payload.get("error_description", "Unknown error")
            logger.error(
                "provisioning.auth.failed",
                extra={"status_code": response.status_code, "client_id": self.config.client_id},
            )
            raise ExternalServiceError(
                "provisioning_auth",
                f"Authentication failed: {description}",
                status_code=response.status_code,
                operation="authenticate",
            )

        self._access_token = payload["access_token"]
        expires_in = int(payload.get("expires_in", 3600))
        self._token_expiry = time.monotonic() + expires_in - TOKEN_EXPIRY_BUFFER
        logger.debug("provisioning.auth.success", extra={"expires_in": expires_in})
        return self._access_token

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def request(
        self,
        method: str,
        endpoint: str,
        json: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated API request and return the decoded body"""
        token = await self._get_access_token()
        request_id = str(uuid4())
        headers = {"Authorization": f"Bearer {token}", "x-request-id": request_id}

        try:
            response = await self.client.request(
                method,
                endpoint,
                json=json,
                headers=headers,
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.TimeoutException as e:
            raise ExternalServiceError(
                "provisioning",
                f"{method} {endpoint} timed out",
                details={"request_id": request_id},
                operation=f"{method} {endpoint}",
            ) from e
        except httpx.RequestError as e:
            raise ExternalServiceError(
                "provisioning",
                f"{method} {endpoint} failed: {e!r}",
                details={"request_id": request_id},
                operation=f"{method} {endpoint}",
            ) from e

        payload = self._json(response)
        logger.debug(
            "provisioning.request",
            extra={
                "method": method,
                "endpoint": endpoint,
                "status_code": response.status_code,
                "request_id": request_id,
            },
        )

        if response.status_code >= 400:
            message = payload.get("message", "API Error")
            violations = payload.get("violations") or []
            if violations:
                message += " - " + ", ".join(
                    f"{v.get('propertyPath', '?')}: {v.get('message', '')}" for v in violations
                )
            raise ExternalServiceError(
                "provisioning",
                f"{message} (HTTP {response.status_code})",
                status_code=response.status_code,
                details={"request_id": request_id},
                operation=f"{method} {endpoint}",
            )

        return payload

    async def get_instance(self, instance_id: str, timeout: float | None = None) -> dict[str, Any]:
        """Fetch one instance; raises ServerNotFoundError on 404"""
        try:
            payload = await self.request("GET", f"/v1/compute/instances/{instance_id}", timeout=timeout)
        except ExternalServiceError as e:
            if e.status_code == 404:
                raise ServerNotFoundError(instance_id, search_type="provider_instance_id") from e
            raise

        data = payload.get("data") or []
        if not data:
            raise ServerNotFoundError(instance_id, search_type="provider_instance_id")
        return data[0]

    async def upgrade_instance(
        self, instance_id: str, target: dict[str, Any], timeout: float | None = None
    ) -> dict[str, Any]:
        """Request a resize of the instance to the target configuration"""
        logger.info(
            "provisioning.upgrade.requested",
            extra={"instance_id": instance_id, "target": target},
        )
        return await self.request(
            "POST", f"/v1/compute/instances/{instance_id}/upgrade", json=target, timeout=timeout
        )

    async def close(self) -> None:
        await self.client.aclose()


def get_provisioning_client() -> ProvisioningClient:
    """Create a provisioning client from application settings"""
    return ProvisioningClient(get_settings().provisioning)
