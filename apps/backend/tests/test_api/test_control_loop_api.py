"""
Tests for the control loop endpoints and API authentication
"""

from types import SimpleNamespace

from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.testclient import TestClient
import pytest

from apps.backend.src.api import common
from apps.backend.src.api.common import get_control_loop, get_current_user
from apps.backend.src.main import app
from apps.backend.src.services.admission_controller import AdmissionController
from apps.backend.src.services.alert_engine import AlertEngine
from apps.backend.src.services.control_loop import ControlLoopDriver
from apps.backend.src.services.scaling_evaluator import ScalingEvaluator
from apps.backend.src.services.scaling_executor import ScalingExecutor
from conftest import make_server, make_snapshot


class StaticSampler:
    def __init__(self, clock):
        self.clock = clock

    async def sample(self, server):
        return make_snapshot(server.id, self.clock.now(), cpu_usage_percent=30.0)


@pytest.fixture
def driver(registry, metric_store, alert_store, ledger, provisioning, notifier, clock):
    return ControlLoopDriver(
        server_registry=registry,
        metric_store=metric_store,
        sampler=StaticSampler(clock),
        alert_store=alert_store,
        alert_engine=AlertEngine(alert_store, notifier, clock),
        ledger=ledger,
        evaluator=ScalingEvaluator(metric_store, clock),
        admission=AdmissionController(ledger, clock),
        executor=ScalingExecutor(provisioning, ledger, registry, notifier, clock),
        clock=clock,
        tick_interval_seconds=300,
    )


@pytest.fixture
def client(driver):
    app.dependency_overrides[get_control_loop] = lambda: driver
    app.dependency_overrides[get_current_user] = lambda: None
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class TestControlLoopEndpoints:
    def test_status_before_any_tick(self, client):
        response = client.get("/api/control-loop/status")

        assert response.status_code == 200
        body = response.json()
        assert body["running"] is False
        assert body["tick_interval_seconds"] == 300
        assert body["ticks_completed"] == 0
        assert body["last_tick"] is None

    def test_manual_tick(self, client, registry):
        registry.add(make_server())

        response = client.post("/api/control-loop/ticks")

        assert response.status_code == 200
        body = response.json()
        assert body["sampling"]["processed"] == 1
        assert body["sampling"]["success"] == 1
        assert body["aborted"] is False

        status = client.get("/api/control-loop/status").json()
        assert status["ticks_completed"] == 1
        assert status["last_tick"]["tick_id"] == body["tick_id"]

    def test_uninitialized_control_loop(self):
        app.dependency_overrides[get_current_user] = lambda: None
        try:
            response = TestClient(app).get("/api/control-loop/status")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "HTTP_503"


class TestAuthentication:
    @pytest.fixture
    def api_key(self, monkeypatch):
        fake_settings = SimpleNamespace(auth=SimpleNamespace(api_key="s3cret"))
        monkeypatch.setattr(common, "get_settings", lambda: fake_settings)
        return "s3cret"

    async def test_no_key_configured_allows_anonymous(self, monkeypatch):
        monkeypatch.setattr(common, "get_settings", lambda: SimpleNamespace(auth=SimpleNamespace(api_key=None)))
        assert await get_current_user(None) is None

    async def test_missing_credentials(self, api_key):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(None)
        assert exc_info.value.status_code == 401

    async def test_wrong_token(self, api_key):
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="nope")
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(credentials)
        assert exc_info.value.status_code == 401

    async def test_valid_token(self, api_key):
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials=api_key)
        assert await get_current_user(credentials) == {"token": api_key}
