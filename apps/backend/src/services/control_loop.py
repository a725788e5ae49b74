"""
Control Loop Driver

The periodic monitoring-and-autoscaling pass. Each tick samples every
monitored server, stores the snapshots, evaluates alert definitions and
scaling policies, admits and executes scaling actions, then runs retention
maintenance. The driver is the only component that schedules work in time;
everything it calls receives "now" from the injected clock.
"""

import asyncio
import contextlib
from collections import defaultdict
from datetime import timedelta
import logging
from typing import Any, Awaitable, Callable
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.backend.src.core.clock import Clock, SystemClock
from apps.backend.src.core.config import ApplicationSettings
from apps.backend.src.core.exceptions import (
    ConfigNotFoundError,
    ServerNotFoundError,
    StoreUnavailableError,
    UnreachableError,
)
from apps.backend.src.core.logging import set_tick_id
from apps.backend.src.models.scaling import ScalingDirection, ScalingPolicy
from apps.backend.src.models.server import Server
from apps.backend.src.schemas.control_loop import ControlLoopStatus, TickSummary
from apps.backend.src.schemas.metrics import MetricSnapshotData
from apps.backend.src.services.admission_controller import AdmissionController
from apps.backend.src.services.alert_engine import AlertEngine
from apps.backend.src.services.alert_store import AlertStore
from apps.backend.src.services.metric_store import MetricStore
from apps.backend.src.services.notification_service import NotificationService
from apps.backend.src.services.scaling_evaluator import ScalingEvaluator
from apps.backend.src.services.scaling_executor import ScalingExecutor
from apps.backend.src.services.scaling_ledger import ScalingLedger
from apps.backend.src.services.server_registry import ServerRegistry
from apps.backend.src.services.telemetry_sampler import TelemetrySampler
from apps.backend.src.utils.provisioning_client import ProvisioningClient

logger = logging.getLogger(__name__)

SKIP_SUPERSEDED = "superseded"
SKIP_CONFIG_NOT_FOUND = "config_not_found"

# Claims outlive the resize call by this margin before they count as abandoned
CLAIM_TTL_MARGIN_SECONDS = 60


def order_server_policies(policies: list[ScalingPolicy]) -> list[ScalingPolicy]:
    """Scale-up policies first; the sort is stable within each direction."""
    return sorted(policies, key=lambda p: p.direction != ScalingDirection.SCALE_UP.value)


class ControlLoopDriver:
    def __init__(
        self,
        *,
        server_registry: ServerRegistry,
        metric_store: MetricStore,
        sampler: TelemetrySampler,
        alert_store: AlertStore,
        alert_engine: AlertEngine,
        ledger: ScalingLedger,
        evaluator: ScalingEvaluator,
        admission: AdmissionController,
        executor: ScalingExecutor,
        clock: Clock,
        tick_interval_seconds: int = 300,
        startup_delay_seconds: int = 0,
        max_concurrent_workers: int = 10,
        retention_days: int = 30,
        stale_event_seconds: int = 3600,
    ):
        self.server_registry = server_registry
        self.metric_store = metric_store
        self.sampler = sampler
        self.alert_store = alert_store
        self.alert_engine = alert_engine
        self.ledger = ledger
        self.evaluator = evaluator
        self.admission = admission
        self.executor = executor
        self.clock = clock

        self.tick_interval_seconds = tick_interval_seconds
        self.startup_delay_seconds = startup_delay_seconds
        self.max_concurrent_workers = max_concurrent_workers
        self.retention_days = retention_days
        self.stale_event_seconds = stale_event_seconds

        self.is_running = False
        self.ticks_completed = 0
        self.last_summary: TickSummary | None = None
        self._task: asyncio.Task | None = None
        self._tick_lock = asyncio.Lock()

    async def start(self) -> None:
        """Start the background tick loop"""
        if self.is_running:
            logger.warning("Control loop is already running")
            return

        self.is_running = True
        logger.info(
            "control_loop.start",
            extra={
                "tick_interval_seconds": self.tick_interval_seconds,
                "startup_delay_seconds": self.startup_delay_seconds,
            },
        )
        self._task = asyncio.create_task(self._loop(), name="control_loop")

    async def stop(self) -> None:
        """Stop the tick loop, cancelling an in-flight tick"""
        if not self.is_running:
            return

        logger.info("control_loop.stop", extra={"ticks_completed": self.ticks_completed})
        self.is_running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None

    def status(self) -> ControlLoopStatus:
        return ControlLoopStatus(
            running=self.is_running,
            tick_interval_seconds=self.tick_interval_seconds,
            ticks_completed=self.ticks_completed,
            last_tick=self.last_summary,
        )

    async def _loop(self) -> None:
        if self.startup_delay_seconds:
            await self.clock.sleep(self.startup_delay_seconds)

        while self.is_running:
            started = self.clock.now()
            try:
                await self.run_tick()
            except Exception as e:
                logger.error(f"Error in control loop tick: {e}", exc_info=True)

            elapsed = (self.clock.now() - started).total_seconds()
            await self.clock.sleep(max(self.tick_interval_seconds - elapsed, 0))

    async def run_tick(self) -> TickSummary:
        """Run one full pass. Ticks never overlap within a process."""
        async with self._tick_lock:
            tick_id = uuid4().hex[:12]
            set_tick_id(tick_id)
            summary = TickSummary(tick_id=tick_id, started_at=self.clock.now())
            logger.info("control_loop.tick.start")

            try:
                servers = await self._list_or_abort(self.server_registry.list_monitored, "servers")
                snapshots = await self._sample_all(servers, summary)

                definitions = await self._list_or_abort(self.alert_store.list_active, "alert_definitions")
                server_names = {server.id: server.name for server in servers}
                summary.alerts = await self.alert_engine.evaluate(definitions, snapshots, server_names)

                policies = await self._list_or_abort(self.ledger.list_active_policies, "scaling_policies")
                await self._scale_all(policies, summary)

                await self._maintenance(summary)

            except StoreUnavailableError as e:
                summary.aborted = True
                summary.error = e.message
                logger.error("control_loop.tick.aborted", extra=e.log_extra())

            finally:
                summary.finished_at = self.clock.now()
                summary.duration_ms = int((summary.finished_at - summary.started_at).total_seconds() * 1000)
                self.ticks_completed += 1
                self.last_summary = summary
                logger.info(
                    "control_loop.tick.completed",
                    extra={
                        "duration_ms": summary.duration_ms,
                        "aborted": summary.aborted,
                        "sampling": summary.sampling.model_dump(),
                        "alerts": summary.alerts.model_dump(),
                        "scaling": summary.scaling.model_dump(),
                    },
                )
                set_tick_id(None)

            return summary

    async def _list_or_abort(self, list_fn: Callable[[], Awaitable[list[Any]]], store: str) -> list[Any]:
        try:
            return await list_fn()
        except Exception as e:
            raise StoreUnavailableError(store, str(e)) from e

    async def _sample_all(self, servers: list[Server], summary: TickSummary) -> dict[UUID, MetricSnapshotData]:
        """Sample and store every server; failures are isolated per server."""
        semaphore = asyncio.Semaphore(self.max_concurrent_workers)
        snapshots: dict[UUID, MetricSnapshotData] = {}

        async def sample_one(server: Server) -> None:
            async with semaphore:
                summary.sampling.processed += 1
                try:
                    snapshot = await self.sampler.sample(server)
                    await self.metric_store.append(snapshot)
                except UnreachableError as e:
                    summary.sampling.failed += 1
                    logger.warning("control_loop.sample.unreachable", extra=e.log_extra())
                    await self._record_status(server.id, "unreachable")
                    return
                except ServerNotFoundError as e:
                    summary.sampling.failed += 1
                    logger.warning("control_loop.sample.not_found", extra=e.log_extra())
                    await self._record_status(server.id, "not_found")
                    return
                except Exception as e:
                    summary.sampling.failed += 1
                    logger.error(
                        "control_loop.sample.failed",
                        extra={"server_id": str(server.id), "error": str(e)},
                        exc_info=True,
                    )
                    return

                snapshots[server.id] = snapshot
                summary.sampling.success += 1
                if snapshot.is_online:
                    await self._record_status(server.id, "running", snapshot.time)
                else:
                    summary.sampling.offline += 1
                    await self._record_status(server.id, "offline")

        await asyncio.gather(*(sample_one(server) for server in servers))
        return snapshots

    async def _record_status(self, server_id: UUID, status: str, seen_at: Any = None) -> None:
        try:
            await self.server_registry.update_status(server_id, status, seen_at)
        except Exception as e:
            logger.warning("control_loop.status.failed", extra={"server_id": str(server_id), "error": str(e)})

    async def _scale_all(self, policies: list[ScalingPolicy], summary: TickSummary) -> None:
        """Per-server pipelines run in parallel; one server's policies run serially."""
        by_server: dict[UUID, list[ScalingPolicy]] = defaultdict(list)
        for policy in policies:
            by_server[policy.server_id].append(policy)

        semaphore = asyncio.Semaphore(self.max_concurrent_workers)

        async def scale_server(server_policies: list[ScalingPolicy]) -> None:
            async with semaphore:
                await self._scale_server(order_server_policies(server_policies), summary)

        await asyncio.gather(*(scale_server(group) for group in by_server.values()))

    async def _scale_server(self, policies: list[ScalingPolicy], summary: TickSummary) -> None:
        stats = summary.scaling
        scaled_up = False

        for policy in policies:
            stats.checked += 1
            if scaled_up and policy.direction == ScalingDirection.SCALE_DOWN.value:
                stats.skip(SKIP_SUPERSEDED)
                continue

            try:
                if policy.server_id is None:
                    # Server deleted; the policy stays active until removed
                    raise ConfigNotFoundError("deleted", policy_id=str(policy.id))

                evaluation = await self.evaluator.evaluate(policy)
                if not evaluation.satisfied:
                    stats.not_satisfied += 1
                    continue

                decision = await self.admission.admit(policy)
                if not decision.admitted:
                    stats.skip(decision.reason or "not_admitted")
                    continue

                result = await self.executor.execute(policy, evaluation)

            except ConfigNotFoundError as e:
                stats.skip(SKIP_CONFIG_NOT_FOUND)
                logger.warning("control_loop.policy.config_not_found", extra=e.log_extra())
                continue
            except Exception as e:
                stats.failed += 1
                logger.error(
                    "control_loop.policy.failed",
                    extra={"policy_id": str(policy.id), "error": str(e)},
                    exc_info=True,
                )
                continue

            if result.success:
                stats.triggered += 1
                if policy.direction == ScalingDirection.SCALE_UP.value:
                    scaled_up = True
            else:
                stats.failed += 1

    async def _maintenance(self, summary: TickSummary) -> None:
        now = self.clock.now()
        try:
            summary.purged_snapshots = await self.metric_store.purge_older_than(
                now - timedelta(days=self.retention_days)
            )
        except Exception as e:
            logger.error("control_loop.purge.failed", extra={"error": str(e)})

        try:
            summary.expired_events = await self.ledger.expire_stale_events(
                now - timedelta(seconds=self.stale_event_seconds), now
            )
        except Exception as e:
            logger.error("control_loop.expire.failed", extra={"error": str(e)})


def create_control_loop(
    settings: ApplicationSettings,
    session_factory: async_sessionmaker[AsyncSession],
    provisioning_client: ProvisioningClient,
    clock: Clock | None = None,
) -> ControlLoopDriver:
    """Wire the control loop components from application settings"""
    clock = clock or SystemClock()
    loop_settings = settings.control_loop

    server_registry = ServerRegistry(session_factory)
    metric_store = MetricStore(session_factory)
    alert_store = AlertStore(session_factory)
    ledger = ScalingLedger(session_factory)
    notifier = NotificationService(settings.notifications)

    return ControlLoopDriver(
        server_registry=server_registry,
        metric_store=metric_store,
        sampler=TelemetrySampler(
            provisioning_client,
            clock,
            glances_timeout=settings.telemetry.glances_timeout,
            lookup_timeout=settings.telemetry.lookup_timeout,
            probe_port=settings.telemetry.probe_port,
            probe_timeout=settings.telemetry.probe_timeout,
        ),
        alert_store=alert_store,
        alert_engine=AlertEngine(alert_store, notifier, clock),
        ledger=ledger,
        evaluator=ScalingEvaluator(metric_store, clock, min_data_points=loop_settings.min_data_points),
        admission=AdmissionController(
            ledger,
            clock,
            quota_timezone=loop_settings.quota_timezone,
            claim_ttl_seconds=settings.provisioning.resize_timeout + CLAIM_TTL_MARGIN_SECONDS,
        ),
        executor=ScalingExecutor(
            provisioning_client,
            ledger,
            server_registry,
            notifier,
            clock,
            resize_timeout=settings.provisioning.resize_timeout,
        ),
        clock=clock,
        tick_interval_seconds=loop_settings.tick_interval_seconds,
        startup_delay_seconds=loop_settings.startup_delay_seconds,
        max_concurrent_workers=loop_settings.max_concurrent_workers,
        retention_days=loop_settings.metric_retention_days,
        stale_event_seconds=loop_settings.stale_event_seconds,
    )
