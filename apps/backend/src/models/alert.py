"""
Alert definition and alert event models.
"""

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from apps.backend.src.core.database import Base


class AlertMetric(str, Enum):
    """Snapshot fields an alert can watch."""

    CPU = "cpu"
    MEMORY = "memory"
    DISK = "disk"
    LOAD = "load"
    RESPONSE_TIME = "response_time"
    UPTIME = "uptime"


class AlertOperator(str, Enum):
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EQUALS = "equals"


class AlertDefinition(Base):
    """Instantaneous threshold check, optionally scoped to one server"""

    __tablename__ = "alert_definitions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Null applies the definition to every monitored server
    server_id = Column(
        UUID(as_uuid=True), ForeignKey("servers.id", ondelete="CASCADE"), nullable=True, index=True
    )

    name = Column(String(255), nullable=False)
    metric = Column(String(32), nullable=False)
    operator = Column(String(32), nullable=False)
    threshold = Column(Float, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=5)

    notification_email = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    last_triggered = Column(DateTime(timezone=True), nullable=True)
    trigger_count = Column(Integer, nullable=False, default=0)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=func.now())
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "metric IN ('cpu', 'memory', 'disk', 'load', 'response_time', 'uptime')",
            name="check_alert_metric",
        ),
        CheckConstraint(
            "operator IN ('greater_than', 'less_than', 'equals')",
            name="check_alert_operator",
        ),
    )


class AlertEvent(Base):
    """Record of a single alert firing"""

    __tablename__ = "alert_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    # Events outlive their definition and server
    alert_id = Column(
        UUID(as_uuid=True), ForeignKey("alert_definitions.id", ondelete="SET NULL"), nullable=True
    )
    server_id = Column(
        UUID(as_uuid=True), ForeignKey("servers.id", ondelete="SET NULL"), nullable=True
    )

    metric = Column(String(32), nullable=False)
    metric_value = Column(Float, nullable=False)
    threshold_value = Column(Float, nullable=False)
    message = Column(Text, nullable=False)
    triggered_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_alert_events_alert_time", "alert_id", "triggered_at"),
        Index("idx_alert_events_server_time", "server_id", "triggered_at"),
    )
