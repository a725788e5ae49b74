"""
Scaling Policy Evaluator

Decides whether a policy's condition has held over its sustained window by
averaging the metric over the snapshots in that window.
"""

from dataclasses import dataclass
from datetime import timedelta
import logging
from statistics import fmean
from uuid import UUID

from apps.backend.src.core.clock import Clock
from apps.backend.src.core.exceptions import InsufficientDataError
from apps.backend.src.models.scaling import ScalingDirection, ScalingMetric, ScalingPolicy
from apps.backend.src.schemas.metrics import MetricSnapshotData
from apps.backend.src.services.metric_store import MetricStore

logger = logging.getLogger(__name__)

DEFAULT_MIN_DATA_POINTS = 3
INSUFFICIENT_DATA = "insufficient_data"
BELOW_THRESHOLD = "threshold_not_met"

PERCENT_FIELDS = {
    ScalingMetric.CPU.value: "cpu_usage_percent",
    ScalingMetric.MEMORY.value: "memory_usage_percent",
    ScalingMetric.DISK.value: "disk_usage_percent",
}


@dataclass(frozen=True)
class EvaluationResult:
    policy_id: UUID
    satisfied: bool
    metric_value: float | None = None
    data_points: int = 0
    reason: str | None = None


def network_rates_mbps(snapshots: list[MetricSnapshotData]) -> list[float]:
    """Throughput between consecutive snapshots from cumulative byte counters.

    Pairs where a counter went backwards (interface reset, reboot) or time did
    not advance are skipped.
    """
    rates: list[float] = []
    previous: MetricSnapshotData | None = None
    for snapshot in snapshots:
        if snapshot.network_bytes_total is None:
            continue
        if previous is not None:
            elapsed = (snapshot.time - previous.time).total_seconds()
            delta = snapshot.network_bytes_total - previous.network_bytes_total
            if elapsed > 0 and delta >= 0:
                rates.append(delta * 8 / elapsed / 1_000_000)
        previous = snapshot
    return rates


def window_mean(
    policy: ScalingPolicy, snapshots: list[MetricSnapshotData], min_data_points: int = DEFAULT_MIN_DATA_POINTS
) -> tuple[float, int]:
    """Mean of the policy's metric over ``snapshots`` and the point count used.

    Raises:
        InsufficientDataError: fewer than ``min_data_points`` usable snapshots
    """
    if policy.metric == ScalingMetric.NETWORK.value:
        with_counters = [s for s in snapshots if s.network_bytes_total is not None]
        rates = network_rates_mbps(with_counters)
        if len(with_counters) < min_data_points or not rates:
            raise InsufficientDataError(str(policy.server_id), policy.metric, len(with_counters), min_data_points)
        return fmean(rates), len(with_counters)

    field = PERCENT_FIELDS.get(policy.metric)
    if field is None:
        raise ValueError(f"Unsupported scaling metric: {policy.metric}")

    values = [getattr(s, field) for s in snapshots]
    values = [float(v) for v in values if v is not None]
    if len(values) < min_data_points:
        raise InsufficientDataError(str(policy.server_id), policy.metric, len(values), min_data_points)
    return fmean(values), len(values)


def threshold_crossed(direction: str, mean: float, threshold: float) -> bool:
    if direction == ScalingDirection.SCALE_UP.value:
        return mean >= threshold
    if direction == ScalingDirection.SCALE_DOWN.value:
        return mean <= threshold
    raise ValueError(f"Unknown scaling direction: {direction}")


class ScalingEvaluator:
    def __init__(self, metric_store: MetricStore, clock: Clock, min_data_points: int = DEFAULT_MIN_DATA_POINTS):
        self.metric_store = metric_store
        self.clock = clock
        self.min_data_points = min_data_points

    async def evaluate(self, policy: ScalingPolicy) -> EvaluationResult:
        now = self.clock.now()
        since = now - timedelta(seconds=policy.sustained_duration)
        snapshots = await self.metric_store.query(policy.server_id, since, now)

        try:
            mean, points = window_mean(policy, snapshots, self.min_data_points)
        except InsufficientDataError as e:
            logger.debug(
                "scaling.evaluate.insufficient_data",
                extra={"policy_id": str(policy.id), "available": e.available, "required": e.required},
            )
            return EvaluationResult(policy.id, False, data_points=e.available, reason=INSUFFICIENT_DATA)

        satisfied = threshold_crossed(policy.direction, mean, policy.threshold)
        return EvaluationResult(
            policy.id,
            satisfied,
            metric_value=round(mean, 4),
            data_points=points,
            reason=None if satisfied else BELOW_THRESHOLD,
        )
