"""
Scaling policy and scaling event (audit log) models.
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
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from apps.backend.src.core.database import Base


class ScalingDirection(str, Enum):
    SCALE_UP = "scale_up"
    SCALE_DOWN = "scale_down"


class ScalingMetric(str, Enum):
    CPU = "cpu"
    MEMORY = "memory"
    DISK = "disk"
    NETWORK = "network"


class ScalingActionType(str, Enum):
    SCALE_UP = "scale_up"
    SCALE_DOWN = "scale_down"
    MANUAL = "manual"


class ScalingEventStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


class ScalingPolicy(Base):
    """
    Sustained-threshold rule that resizes a server.

    Admission state lives in ``last_triggered`` (start of the cooldown) and
    ``claimed_at`` (execution claim taken by the admission controller).
    """

    __tablename__ = "scaling_policies"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    # Null once the server is deleted; the policy stays for manual cleanup
    server_id = Column(
        UUID(as_uuid=True), ForeignKey("servers.id", ondelete="SET NULL"), nullable=True, index=True
    )

    policy_name = Column(String(255), nullable=False)
    direction = Column(String(16), nullable=False)
    metric = Column(String(16), nullable=False)
    threshold = Column(Float, nullable=False)
    sustained_duration = Column(Integer, nullable=False, default=300)
    target_configuration = Column(JSONB, nullable=False, default=dict)

    cooldown_period = Column(Integer, nullable=False, default=1800)
    max_actions_per_day = Column(Integer, nullable=False, default=3)

    notification_email = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    last_triggered = Column(DateTime(timezone=True), nullable=True)
    trigger_count = Column(Integer, nullable=False, default=0)
    claimed_at = Column(DateTime(timezone=True), nullable=True)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=func.now())
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    server = relationship("Server", back_populates="scaling_policies")

    __table_args__ = (
        CheckConstraint("direction IN ('scale_up', 'scale_down')", name="check_policy_direction"),
        CheckConstraint(
            "metric IN ('cpu', 'memory', 'disk', 'network')", name="check_policy_metric"
        ),
        CheckConstraint("threshold > 0", name="check_policy_threshold"),
        CheckConstraint("sustained_duration >= 60", name="check_policy_sustained_duration"),
        CheckConstraint("cooldown_period >= 300", name="check_policy_cooldown"),
        CheckConstraint("max_actions_per_day >= 1", name="check_policy_max_actions"),
    )


class ScalingEvent(Base):
    """Audit record of one scaling attempt"""

    __tablename__ = "scaling_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Null for manual actions and for events whose policy was deleted
    policy_id = Column(
        UUID(as_uuid=True),
        ForeignKey("scaling_policies.id", ondelete="SET NULL"),
        nullable=True,
    )
    server_id = Column(
        UUID(as_uuid=True), ForeignKey("servers.id", ondelete="SET NULL"), nullable=True
    )

    action_type = Column(String(16), nullable=False)
    metric_value = Column(Float, nullable=True)
    threshold_value = Column(Float, nullable=True)
    old_configuration = Column(JSONB, nullable=True)
    new_configuration = Column(JSONB, nullable=True)

    status = Column(String(16), nullable=False, default=ScalingEventStatus.IN_PROGRESS.value)
    error_message = Column(Text, nullable=True)
    triggered_by = Column(String(100), nullable=True)

    executed_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "action_type IN ('scale_up', 'scale_down', 'manual')", name="check_event_action_type"
        ),
        CheckConstraint(
            "status IN ('success', 'failed', 'in_progress')", name="check_event_status"
        ),
        Index("idx_scaling_events_policy_time", "policy_id", "executed_at"),
        Index("idx_scaling_events_server_time", "server_id", "executed_at"),
        Index("idx_scaling_events_status", "status"),
    )
