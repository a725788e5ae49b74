"""
Shared fixtures: a manual clock and in-memory stand-ins for the persistence
services and the provisioning API.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
from sqlalchemy.dialects import postgresql

from apps.backend.src.core.config import NotificationSettings
from apps.backend.src.core.exceptions import ExternalServiceError, ServerNotFoundError
from apps.backend.src.models.alert import AlertDefinition, AlertEvent
from apps.backend.src.models.scaling import ScalingEvent, ScalingEventStatus, ScalingPolicy
from apps.backend.src.models.server import Server
from apps.backend.src.schemas.metrics import MetricSnapshotData
from apps.backend.src.services.metric_store import MetricStore
from apps.backend.src.services.notification_service import NotificationService
from apps.backend.src.services.scaling_ledger import ABANDONED_MESSAGE

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to; sleeping advances it."""

    def __init__(self, start: datetime = T0):
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


class InMemoryMetricStore(MetricStore):
    def __init__(self):
        super().__init__(session_factory=None)
        self.snapshots: dict[UUID, list[MetricSnapshotData]] = {}
        self.fail_append = False

    async def append(self, snapshot: MetricSnapshotData) -> None:
        if self.fail_append:
            raise RuntimeError("metric store unavailable")
        series = self.snapshots.setdefault(snapshot.server_id, [])
        series.append(snapshot)
        series.sort(key=lambda s: s.time)

    async def query(self, server_id: UUID, since: datetime, until: datetime) -> list[MetricSnapshotData]:
        return [s for s in self.snapshots.get(server_id, []) if since <= s.time <= until]

    async def latest(self, server_id: UUID) -> MetricSnapshotData | None:
        series = self.snapshots.get(server_id)
        return series[-1] if series else None

    async def purge_older_than(self, cutoff: datetime) -> int:
        purged = 0
        for server_id, series in self.snapshots.items():
            kept = [s for s in series if s.time >= cutoff]
            purged += len(series) - len(kept)
            self.snapshots[server_id] = kept
        return purged


class InMemoryServerRegistry:
    def __init__(self):
        self.servers: dict[UUID, Server] = {}
        self.status_updates: list[tuple[UUID, str]] = []
        self.fail_listing = False

    def add(self, server: Server) -> Server:
        self.servers[server.id] = server
        return server

    async def list_monitored(self) -> list[Server]:
        if self.fail_listing:
            raise RuntimeError("database is down")
        return [s for s in self.servers.values() if s.monitoring_enabled]

    async def get(self, server_id: UUID) -> Server:
        server = self.servers.get(server_id)
        if server is None:
            raise ServerNotFoundError(str(server_id))
        return server

    async def update_status(self, server_id: UUID, status: str, seen_at: datetime | None = None) -> None:
        self.status_updates.append((server_id, status))
        server = self.servers.get(server_id)
        if server is not None:
            server.status = status
            if seen_at is not None:
                server.last_seen = seen_at


class InMemoryAlertStore:
    def __init__(self):
        self.definitions: list[AlertDefinition] = []
        self.events: list[AlertEvent] = []

    async def list_active(self) -> list[AlertDefinition]:
        return [d for d in self.definitions if d.is_active]

    async def record_firing(self, event: AlertEvent) -> None:
        self.events.append(event)
        for definition in self.definitions:
            if definition.id == event.alert_id:
                definition.trigger_count += 1
                definition.last_triggered = event.triggered_at


class InMemoryScalingLedger:
    """Mirrors the conditional updates of ScalingLedger on plain objects."""

    def __init__(self, registry: InMemoryServerRegistry | None = None):
        self.registry = registry
        self.policies: dict[UUID, ScalingPolicy] = {}
        self.events: dict[UUID, ScalingEvent] = {}

    def add_policy(self, policy: ScalingPolicy) -> ScalingPolicy:
        self.policies[policy.id] = policy
        return policy

    async def list_active_policies(self) -> list[ScalingPolicy]:
        return [p for p in self.policies.values() if p.is_active]

    async def count_successful_events(self, policy_id: UUID, start: datetime, end: datetime) -> int:
        return sum(
            1
            for e in self.events.values()
            if e.policy_id == policy_id
            and e.status == ScalingEventStatus.SUCCESS.value
            and start <= e.executed_at < end
        )

    async def try_claim(
        self, policy_id: UUID, now: datetime, cooldown_cutoff: datetime, stale_cutoff: datetime
    ) -> bool:
        policy = self.policies.get(policy_id)
        if policy is None or not policy.is_active:
            return False
        if policy.claimed_at is not None and policy.claimed_at >= stale_cutoff:
            return False
        if policy.last_triggered is not None and policy.last_triggered > cooldown_cutoff:
            return False
        policy.claimed_at = now
        return True

    async def release_claim(self, policy_id: UUID) -> None:
        policy = self.policies.get(policy_id)
        if policy is not None:
            policy.claimed_at = None

    async def start_event(self, event: ScalingEvent) -> ScalingEvent:
        event.status = ScalingEventStatus.IN_PROGRESS.value
        self.events[event.id] = event
        return event

    async def complete_success(
        self,
        event_id: UUID,
        policy_id: UUID | None,
        server_id: UUID,
        new_configuration: dict[str, Any],
        completed_at: datetime,
    ) -> None:
        event = self.events[event_id]
        event.status = ScalingEventStatus.SUCCESS.value
        event.completed_at = completed_at
        if policy_id is not None and policy_id in self.policies:
            policy = self.policies[policy_id]
            policy.last_triggered = completed_at
            policy.trigger_count = (policy.trigger_count or 0) + 1
            policy.claimed_at = None
        if self.registry is not None and server_id in self.registry.servers:
            self.registry.servers[server_id].configuration = new_configuration

    async def complete_failure(
        self, event_id: UUID, policy_id: UUID | None, error_message: str, completed_at: datetime
    ) -> None:
        event = self.events[event_id]
        event.status = ScalingEventStatus.FAILED.value
        event.completed_at = completed_at
        event.error_message = error_message
        if policy_id is not None and policy_id in self.policies:
            self.policies[policy_id].claimed_at = None

    async def expire_stale_events(self, cutoff: datetime, now: datetime) -> int:
        expired = 0
        for event in self.events.values():
            if event.status == ScalingEventStatus.IN_PROGRESS.value and event.executed_at < cutoff:
                event.status = ScalingEventStatus.FAILED.value
                event.completed_at = now
                event.error_message = ABANDONED_MESSAGE
                expired += 1
        return expired

    def events_for(self, policy_id: UUID) -> list[ScalingEvent]:
        return [e for e in self.events.values() if e.policy_id == policy_id]


class FakeProvisioningClient:
    def __init__(self):
        self.instances: dict[str, dict[str, Any]] = {}
        self.upgrades: list[tuple[str, dict[str, Any]]] = []
        self.lookup_timeouts: list[float | None] = []
        self.upgrade_error: Exception | None = None
        self.upgrade_delay: float = 0.0
        self.on_upgrade = None

    def add_instance(self, instance_id: str, status: str = "running", **fields: Any) -> None:
        self.instances[instance_id] = {"instanceId": instance_id, "status": status, **fields}

    async def get_instance(self, instance_id: str, timeout: float | None = None) -> dict[str, Any]:
        self.lookup_timeouts.append(timeout)
        if instance_id not in self.instances:
            raise ServerNotFoundError(instance_id, search_type="provider_instance_id")
        return self.instances[instance_id]

    async def upgrade_instance(
        self, instance_id: str, target: dict[str, Any], timeout: float | None = None
    ) -> dict[str, Any]:
        self.upgrades.append((instance_id, target))
        if self.on_upgrade is not None:
            self.on_upgrade()
        if self.upgrade_delay:
            await asyncio.sleep(self.upgrade_delay)
        if self.upgrade_error is not None:
            raise self.upgrade_error
        return {"data": [{"instanceId": instance_id}]}

    async def close(self) -> None:
        pass


class FakeNotifier(NotificationService):
    """Renders like the real service but records instead of delivering."""

    def __init__(self, fail: bool = False):
        super().__init__(NotificationSettings(SMTP_HOST=None, GOTIFY_URL=None, GOTIFY_TOKEN=None))
        self.sent: list[dict[str, Any]] = []
        self.fail = fail

    async def notify(self, recipient: str | None, subject: str, body: str, priority: int = 5) -> bool:
        if self.fail:
            raise ExternalServiceError("smtp", "mail relay refused connection")
        self.sent.append({"recipient": recipient, "subject": subject, "body": body, "priority": priority})
        return True


def make_server(**overrides: Any) -> Server:
    values = {
        "id": uuid4(),
        "provider_instance_id": f"inst-{uuid4().hex[:8]}",
        "name": "web-1",
        "ip_address": "203.0.113.10",
        "status": "running",
        "configuration": {"product_id": "V45", "cpu_cores": 4, "ram_mb": 8192, "disk_mb": 204800},
        "monitoring_enabled": True,
        "glances_port": 61208,
        "glances_url": None,
    }
    values.update(overrides)
    return Server(**values)


def make_policy(server: Server, **overrides: Any) -> ScalingPolicy:
    values = {
        "id": uuid4(),
        "server_id": server.id,
        "policy_name": "cpu-up",
        "direction": "scale_up",
        "metric": "cpu",
        "threshold": 80.0,
        "sustained_duration": 300,
        "target_configuration": {"cpu_cores": 8, "ram_mb": 16384},
        "cooldown_period": 1800,
        "max_actions_per_day": 3,
        "notification_email": None,
        "is_active": True,
        "last_triggered": None,
        "trigger_count": 0,
        "claimed_at": None,
    }
    values.update(overrides)
    return ScalingPolicy(**values)


def make_alert(**overrides: Any) -> AlertDefinition:
    values = {
        "id": uuid4(),
        "server_id": None,
        "name": "High CPU",
        "metric": "cpu",
        "operator": "greater_than",
        "threshold": 90.0,
        "duration_minutes": 5,
        "notification_email": "ops@example.com",
        "is_active": True,
        "last_triggered": None,
        "trigger_count": 0,
    }
    values.update(overrides)
    return AlertDefinition(**values)


def make_snapshot(server_id: UUID, time: datetime, **fields: Any) -> MetricSnapshotData:
    return MetricSnapshotData(server_id=server_id, time=time, **fields)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metric_store() -> InMemoryMetricStore:
    return InMemoryMetricStore()


@pytest.fixture
def registry() -> InMemoryServerRegistry:
    return InMemoryServerRegistry()


@pytest.fixture
def ledger(registry) -> InMemoryScalingLedger:
    return InMemoryScalingLedger(registry)


@pytest.fixture
def alert_store() -> InMemoryAlertStore:
    return InMemoryAlertStore()


@pytest.fixture
def provisioning() -> FakeProvisioningClient:
    return FakeProvisioningClient()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


def compile_statement(statement):
    """Compile a SQLAlchemy statement the way the asyncpg engine would see it."""
    return statement.compile(dialect=postgresql.dialect())


def statement_sql(statement) -> str:
    return " ".join(str(compile_statement(statement)).split())


@pytest.fixture
def db_session():
    """Mock AsyncSession; ``execute`` reports one affected row by default."""
    session = AsyncMock()
    session.add = MagicMock()
    session.execute.return_value = MagicMock(rowcount=1)
    return session


@pytest.fixture
def db_session_factory(db_session):
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = db_session
    return factory
