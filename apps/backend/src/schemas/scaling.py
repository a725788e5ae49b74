"""
Scaling policy, scaling event and statistics schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from apps.backend.src.models.scaling import (
    ScalingActionType,
    ScalingDirection,
    ScalingEventStatus,
    ScalingMetric,
)
from apps.backend.src.schemas.server import ServerConfiguration


class ScalingPolicyBase(BaseModel):
    server_id: UUID
    policy_name: str = Field(..., min_length=1, max_length=255)
    direction: ScalingDirection
    metric: ScalingMetric
    threshold: float = Field(..., gt=0, description="Percent for cpu/memory/disk, Mbit/s for network")
    sustained_duration: int = Field(default=300, ge=60, description="Averaging window in seconds")
    target_configuration: ServerConfiguration
    cooldown_period: int = Field(default=1800, ge=300, description="Seconds between actions")
    max_actions_per_day: int = Field(default=3, ge=1, le=100)
    notification_email: EmailStr | None = None
    is_active: bool = True

    @field_validator("threshold")
    @classmethod
    def validate_percentage(cls, v: float, info: Any) -> float:
        metric = info.data.get("metric")
        if metric is not None and metric != ScalingMetric.NETWORK and v > 100:
            raise ValueError("Percentage thresholds must not exceed 100")
        return v

    @field_validator("target_configuration")
    @classmethod
    def validate_target(cls, v: ServerConfiguration) -> ServerConfiguration:
        if not v.to_provider_payload():
            raise ValueError("Target configuration must set at least one field")
        return v


class ScalingPolicyCreate(ScalingPolicyBase):
    created_by: str | None = Field(None, max_length=100)


class ScalingPolicyUpdate(BaseModel):
    policy_name: str | None = Field(None, min_length=1, max_length=255)
    threshold: float | None = Field(None, gt=0)
    sustained_duration: int | None = Field(None, ge=60)
    target_configuration: ServerConfiguration | None = None
    cooldown_period: int | None = Field(None, ge=300)
    max_actions_per_day: int | None = Field(None, ge=1, le=100)
    notification_email: EmailStr | None = None
    is_active: bool | None = None


class ScalingPolicyResponse(BaseModel):
    id: UUID
    server_id: UUID | None = None
    policy_name: str
    direction: ScalingDirection
    metric: ScalingMetric
    threshold: float
    sustained_duration: int
    target_configuration: dict[str, Any]
    cooldown_period: int
    max_actions_per_day: int
    notification_email: str | None = None
    is_active: bool
    last_triggered: datetime | None = None
    trigger_count: int = 0
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ScalingEventResponse(BaseModel):
    id: UUID
    policy_id: UUID | None = None
    server_id: UUID | None = None
    action_type: ScalingActionType
    metric_value: float | None = None
    threshold_value: float | None = None
    old_configuration: dict[str, Any] | None = None
    new_configuration: dict[str, Any] | None = None
    status: ScalingEventStatus
    error_message: str | None = None
    triggered_by: str | None = None
    executed_at: datetime
    completed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ScalingStatistics(BaseModel):
    total_policies: int = 0
    active_policies: int = 0
    scale_up_policies: int = 0
    scale_down_policies: int = 0
    actions_last_24h: int = 0
    success_rate: float = Field(0.0, description="Percent of events that succeeded")
    metric_distribution: dict[str, int] = Field(default_factory=dict)
