"""
Control loop tick summary and status schemas.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class SamplingStats(BaseModel):
    processed: int = 0
    success: int = 0
    offline: int = 0
    failed: int = 0


class AlertStats(BaseModel):
    evaluated: int = 0
    triggered: int = 0
    errors: int = 0


class ScalingStats(BaseModel):
    checked: int = 0
    not_satisfied: int = 0
    triggered: int = 0
    skipped: int = 0
    failed: int = 0
    skipped_by_reason: dict[str, int] = Field(default_factory=dict)

    def skip(self, reason: str) -> None:
        self.skipped += 1
        self.skipped_by_reason[reason] = self.skipped_by_reason.get(reason, 0) + 1


class TickSummary(BaseModel):
    """Outcome of one pass of the control loop"""

    tick_id: str
    started_at: datetime
    finished_at: datetime | None = None
    duration_ms: int | None = None
    sampling: SamplingStats = Field(default_factory=SamplingStats)
    alerts: AlertStats = Field(default_factory=AlertStats)
    scaling: ScalingStats = Field(default_factory=ScalingStats)
    purged_snapshots: int = 0
    expired_events: int = 0
    aborted: bool = False
    error: str | None = None


class ControlLoopStatus(BaseModel):
    running: bool
    tick_interval_seconds: int
    ticks_completed: int
    last_tick: TickSummary | None = None
