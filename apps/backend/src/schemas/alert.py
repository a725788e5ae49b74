"""
Alert definition and alert event schemas.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from apps.backend.src.models.alert import AlertMetric, AlertOperator


class AlertDefinitionBase(BaseModel):
    server_id: UUID | None = Field(None, description="Server scope; null applies to all servers")
    name: str = Field(..., min_length=1, max_length=255)
    metric: AlertMetric
    operator: AlertOperator
    threshold: float
    duration_minutes: int = Field(default=5, ge=1, le=1440)
    notification_email: EmailStr | None = None
    is_active: bool = True


class AlertDefinitionCreate(AlertDefinitionBase):
    created_by: str | None = Field(None, max_length=100)


class AlertDefinitionUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    metric: AlertMetric | None = None
    operator: AlertOperator | None = None
    threshold: float | None = None
    duration_minutes: int | None = Field(None, ge=1, le=1440)
    notification_email: EmailStr | None = None
    is_active: bool | None = None


class AlertDefinitionResponse(AlertDefinitionBase):
    id: UUID
    last_triggered: datetime | None = None
    trigger_count: int = 0
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class AlertEventResponse(BaseModel):
    id: UUID
    alert_id: UUID | None = None
    server_id: UUID | None = None
    metric: str
    metric_value: float
    threshold_value: float
    message: str
    triggered_at: datetime

    model_config = ConfigDict(from_attributes=True)
