"""
Tests for the provisioning API client using httpx.MockTransport
"""

import asyncio
import json

import httpx
import pytest

from apps.backend.src.core.config import ProvisioningSettings
from apps.backend.src.core.exceptions import ExternalServiceError, ServerNotFoundError
from apps.backend.src.utils.provisioning_client import ProvisioningClient

AUTH_URL = "https://auth.test/protocol/openid-connect/token"
API_URL = "https://api.test"


@pytest.fixture
def settings():
    return ProvisioningSettings(
        PROVISIONING_API_URL=API_URL,
        PROVISIONING_AUTH_URL=AUTH_URL,
        PROVISIONING_CLIENT_ID="client-id",
        PROVISIONING_CLIENT_SECRET="client-secret",
        PROVISIONING_API_USER="api@example.com",
        PROVISIONING_API_PASSWORD="hunter2",
    )


class RecordingHandler:
    """Serves a token and then scripted API responses."""

    def __init__(self, api_responses=None, token_response=None):
        self.requests: list[httpx.Request] = []
        self.api_responses = list(api_responses or [])
        self.token_response = token_response or httpx.Response(
            200, json={"access_token": "tok-1", "expires_in": 300}
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) == AUTH_URL:
            return self.token_response
        return self.api_responses.pop(0)

    @property
    def auth_requests(self):
        return [r for r in self.requests if str(r.url) == AUTH_URL]

    @property
    def api_requests(self):
        return [r for r in self.requests if str(r.url) != AUTH_URL]


def _client(settings, handler):
    return ProvisioningClient(settings, transport=httpx.MockTransport(handler))


class TestAuthentication:
    async def test_password_grant_form(self, settings):
        handler = RecordingHandler([httpx.Response(200, json={"data": [{"instanceId": "i-1"}]})])
        async with _client(settings, handler) as client:
            await client.get_instance("i-1")

        auth = handler.auth_requests[0]
        assert auth.method == "POST"
        form = dict(pair.split("=", 1) for pair in auth.content.decode().split("&"))
        assert form["grant_type"] == "password"
        assert form["client_id"] == "client-id"
        assert form["username"] == "api%40example.com"

    async def test_token_is_cached(self, settings):
        handler = RecordingHandler(
            [httpx.Response(200, json={"data": [{"instanceId": "i-1"}]}) for _ in range(3)]
        )
        async with _client(settings, handler) as client:
            for _ in range(3):
                await client.get_instance("i-1")

        assert len(handler.auth_requests) == 1
        assert len(handler.api_requests) == 3

    async def test_expired_token_is_refreshed(self, settings):
        handler = RecordingHandler(
            [httpx.Response(200, json={"data": [{"instanceId": "i-1"}]}) for _ in range(2)],
            # Lifetime shorter than the expiry buffer is stale immediately
            token_response=httpx.Response(200, json={"access_token": "tok", "expires_in": 30}),
        )
        async with _client(settings, handler) as client:
            await client.get_instance("i-1")
            await client.get_instance("i-1")

        assert len(handler.auth_requests) == 2

    async def test_concurrent_callers_share_one_grant(self, settings):
        auth_calls = []

        async def handler(request):
            if str(request.url) == AUTH_URL:
                auth_calls.append(request)
                await asyncio.sleep(0.01)
                return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 300})
            return httpx.Response(200, json={"data": [{"instanceId": "i-1"}]})

        async with ProvisioningClient(settings, transport=httpx.MockTransport(handler)) as client:
            await asyncio.gather(*(client.get_instance("i-1") for _ in range(5)))

        assert len(auth_calls) == 1

    async def test_auth_failure(self, settings):
        handler = RecordingHandler(
            token_response=httpx.Response(401, json={"error_description": "Invalid user credentials"})
        )
        async with _client(settings, handler) as client:
            with pytest.raises(ExternalServiceError) as exc_info:
                await client.get_instance("i-1")

        assert exc_info.value.message == "Authentication failed: Invalid user credentials"
        assert exc_info.value.status_code == 401
        assert handler.api_requests == []


class TestRequests:
    async def test_headers(self, settings):
        handler = RecordingHandler([httpx.Response(200, json={"data": [{"instanceId": "i-1"}]})])
        async with _client(settings, handler) as client:
            await client.get_instance("i-1")

        request = handler.api_requests[0]
        assert request.url.path == "/v1/compute/instances/i-1"
        assert request.headers["Authorization"] == "Bearer tok-1"
        assert request.headers["x-request-id"]

    async def test_lookup_timeout_applies_to_request(self, settings):
        handler = RecordingHandler([httpx.Response(200, json={"data": [{"instanceId": "i-1"}]})])
        async with _client(settings, handler) as client:
            await client.get_instance("i-1", timeout=4.0)

        assert handler.api_requests[0].extensions["timeout"]["read"] == 4.0

    async def test_error_with_violations(self, settings):
        body = {
            "message": "Bad Request",
            "violations": [
                {"propertyPath": "productId", "message": "must not be blank"},
                {"propertyPath": "ramMb", "message": "too small"},
            ],
        }
        handler = RecordingHandler([httpx.Response(400, json=body)])
        async with _client(settings, handler) as client:
            with pytest.raises(ExternalServiceError) as exc_info:
                await client.upgrade_instance("i-1", {"productId": ""})

        assert exc_info.value.message == (
            "Bad Request - productId: must not be blank, ramMb: too small (HTTP 400)"
        )
        assert exc_info.value.status_code == 400

    async def test_error_without_body(self, settings):
        handler = RecordingHandler([httpx.Response(502, text="bad gateway")])
        async with _client(settings, handler) as client:
            with pytest.raises(ExternalServiceError) as exc_info:
                await client.request("GET", "/v1/compute/instances")

        assert exc_info.value.message == "API Error (HTTP 502)"

    async def test_transport_error(self, settings):
        def handler(request):
            if str(request.url) == AUTH_URL:
                return httpx.Response(200, json={"access_token": "tok", "expires_in": 300})
            raise httpx.ConnectError("connection refused", request=request)

        async with ProvisioningClient(settings, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ExternalServiceError) as exc_info:
                await client.get_instance("i-1")

        assert exc_info.value.status_code is None
        assert "failed" in exc_info.value.message


class TestInstances:
    async def test_get_instance_returns_first_record(self, settings):
        handler = RecordingHandler(
            [httpx.Response(200, json={"data": [{"instanceId": "i-1", "status": "running"}]})]
        )
        async with _client(settings, handler) as client:
            instance = await client.get_instance("i-1")

        assert instance == {"instanceId": "i-1", "status": "running"}

    async def test_404_maps_to_not_found(self, settings):
        handler = RecordingHandler([httpx.Response(404, json={"message": "Entity not found"})])
        async with _client(settings, handler) as client:
            with pytest.raises(ServerNotFoundError):
                await client.get_instance("i-missing")

    async def test_empty_data_maps_to_not_found(self, settings):
        handler = RecordingHandler([httpx.Response(200, json={"data": []})])
        async with _client(settings, handler) as client:
            with pytest.raises(ServerNotFoundError):
                await client.get_instance("i-missing")

    async def test_upgrade_posts_target(self, settings):
        handler = RecordingHandler([httpx.Response(200, json={"data": [{"instanceId": "i-1"}]})])
        async with _client(settings, handler) as client:
            await client.upgrade_instance("i-1", {"productId": "V92", "cpuCores": 8})

        request = handler.api_requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/compute/instances/i-1/upgrade"
        assert json.loads(request.content) == {"productId": "V92", "cpuCores": 8}
