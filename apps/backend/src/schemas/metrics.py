"""
Metric snapshot schemas.

``MetricSnapshotData`` is the value passed from the sampler through the store
to the alert engine and the scaling evaluator.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TimeRange(str, Enum):
    """Supported history windows"""

    ONE_HOUR = "1h"
    SIX_HOURS = "6h"
    ONE_DAY = "24h"
    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"


TIME_RANGE_SECONDS: dict[TimeRange, int] = {
    TimeRange.ONE_HOUR: 3600,
    TimeRange.SIX_HOURS: 6 * 3600,
    TimeRange.ONE_DAY: 24 * 3600,
    TimeRange.SEVEN_DAYS: 7 * 24 * 3600,
    TimeRange.THIRTY_DAYS: 30 * 24 * 3600,
}


class MetricSnapshotData(BaseModel):
    """Immutable utilization sample of one server at one time"""

    server_id: UUID
    time: datetime

    cpu_usage_percent: float | None = Field(None, ge=0, le=100)
    load_average_1m: float | None = Field(None, ge=0)

    memory_total_bytes: int | None = Field(None, ge=0)
    memory_used_bytes: int | None = Field(None, ge=0)
    memory_usage_percent: float | None = Field(None, ge=0, le=100)

    disk_total_bytes: int | None = Field(None, ge=0)
    disk_used_bytes: int | None = Field(None, ge=0)
    disk_usage_percent: float | None = Field(None, ge=0, le=100)

    network_bytes_in: int | None = Field(None, ge=0)
    network_bytes_out: int | None = Field(None, ge=0)

    uptime_seconds: int | None = Field(None, ge=0)
    response_time_ms: float | None = Field(None, ge=0)
    is_online: bool = True

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def network_bytes_total(self) -> int | None:
        if self.network_bytes_in is None or self.network_bytes_out is None:
            return None
        return self.network_bytes_in + self.network_bytes_out


class MetricStats(BaseModel):
    avg: float | None = None
    max: float | None = None
    min: float | None = None


class MetricsSummary(BaseModel):
    data_points: int = 0
    cpu: MetricStats = Field(default_factory=MetricStats)
    memory: MetricStats = Field(default_factory=MetricStats)
    disk: MetricStats = Field(default_factory=MetricStats)
    response_time: MetricStats = Field(default_factory=MetricStats)
    online_ratio: float | None = Field(None, description="Share of online snapshots, 0..1")


class MetricsHistory(BaseModel):
    server_id: UUID
    time_range: TimeRange
    since: datetime
    until: datetime
    snapshots: list[MetricSnapshotData]
    summary: MetricsSummary


class UptimeStatistics(BaseModel):
    server_id: UUID
    period_days: int
    total_checks: int
    online_checks: int
    uptime_percent: float | None
