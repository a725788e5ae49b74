"""
Alert Engine

Instantaneous threshold checks against the newest snapshot of each server.
There is no alert cooldown: a breached definition fires on every tick.
"""

import logging
from typing import Callable
from uuid import UUID

from apps.backend.src.core.clock import Clock
from apps.backend.src.core.exceptions import MetricUnavailableError
from apps.backend.src.models.alert import AlertDefinition, AlertEvent, AlertMetric, AlertOperator
from apps.backend.src.schemas.control_loop import AlertStats
from apps.backend.src.schemas.metrics import MetricSnapshotData
from apps.backend.src.services.alert_store import AlertStore
from apps.backend.src.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

EQUALS_TOLERANCE = 0.1

METRIC_UNITS: dict[str, str] = {
    AlertMetric.CPU.value: "%",
    AlertMetric.MEMORY.value: "%",
    AlertMetric.DISK.value: "%",
    AlertMetric.LOAD.value: "",
    AlertMetric.RESPONSE_TIME.value: "ms",
    AlertMetric.UPTIME.value: "h",
}


def _uptime_hours(snapshot: MetricSnapshotData) -> float | None:
    if snapshot.uptime_seconds is None:
        return None
    return snapshot.uptime_seconds / 3600


METRIC_EXTRACTORS: dict[str, Callable[[MetricSnapshotData], float | None]] = {
    AlertMetric.CPU.value: lambda s: s.cpu_usage_percent,
    AlertMetric.MEMORY.value: lambda s: s.memory_usage_percent,
    AlertMetric.DISK.value: lambda s: s.disk_usage_percent,
    AlertMetric.LOAD.value: lambda s: s.load_average_1m,
    AlertMetric.RESPONSE_TIME.value: lambda s: s.response_time_ms,
    AlertMetric.UPTIME.value: _uptime_hours,
}


def extract_alert_value(snapshot: MetricSnapshotData, metric: str) -> float:
    extractor = METRIC_EXTRACTORS.get(metric)
    value = extractor(snapshot) if extractor else None
    if value is None:
        raise MetricUnavailableError(str(snapshot.server_id), metric)
    return float(value)


def condition_met(value: float, operator: str, threshold: float) -> bool:
    if operator == AlertOperator.GREATER_THAN.value:
        return value > threshold
    if operator == AlertOperator.LESS_THAN.value:
        return value < threshold
    if operator == AlertOperator.EQUALS.value:
        return abs(value - threshold) < EQUALS_TOLERANCE
    raise ValueError(f"Unknown alert operator: {operator}")


class AlertEngine:
    def __init__(self, alert_store: AlertStore, notifier: NotificationService, clock: Clock):
        self.alert_store = alert_store
        self.notifier = notifier
        self.clock = clock

    async def evaluate(
        self,
        definitions: list[AlertDefinition],
        snapshots: dict[UUID, MetricSnapshotData],
        server_names: dict[UUID, str] | None = None,
    ) -> AlertStats:
        """Check every definition against this tick's snapshots.

        A failing definition is logged and counted; the remaining definitions
        are still evaluated.
        """
        stats = AlertStats()
        server_names = server_names or {}

        for definition in definitions:
            if definition.server_id is not None:
                targets = [definition.server_id] if definition.server_id in snapshots else []
            else:
                targets = list(snapshots)

            for server_id in targets:
                snapshot = snapshots[server_id]
                if not snapshot.is_online:
                    continue
                stats.evaluated += 1
                try:
                    fired = await self._evaluate_one(definition, snapshot, server_names.get(server_id))
                except Exception as e:
                    stats.errors += 1
                    logger.warning(
                        "alerts.definition.failed",
                        extra={
                            "alert_id": str(definition.id),
                            "server_id": str(server_id),
                            "error": str(e),
                        },
                    )
                    continue
                if fired:
                    stats.triggered += 1

        return stats

    async def _evaluate_one(
        self, definition: AlertDefinition, snapshot: MetricSnapshotData, server_name: str | None
    ) -> bool:
        value = extract_alert_value(snapshot, definition.metric)
        if not condition_met(value, definition.operator, definition.threshold):
            return False

        unit = METRIC_UNITS.get(definition.metric, "")
        message = self.notifier.render_alert_message(definition.name, value, definition.threshold, unit)
        event = AlertEvent(
            alert_id=definition.id,
            server_id=snapshot.server_id,
            metric=definition.metric,
            metric_value=value,
            threshold_value=definition.threshold,
            message=message,
            triggered_at=self.clock.now(),
        )
        await self.alert_store.record_firing(event)

        logger.info(
            "alerts.triggered",
            extra={
                "alert_id": str(definition.id),
                "server_id": str(snapshot.server_id),
                "metric": definition.metric,
                "value": value,
                "threshold": definition.threshold,
            },
        )

        if definition.notification_email or self.notifier.gotify_enabled:
            try:
                await self.notifier.notify_alert(
                    definition.notification_email,
                    definition.name,
                    server_name or str(snapshot.server_id),
                    message,
                )
            except Exception as e:
                logger.warning(
                    "alerts.notification.failed",
                    extra={"alert_id": str(definition.id), "error": str(e)},
                )
        return True
