"""
VPS Autoscaler Models

This package contains all SQLAlchemy ORM models organized by domain.
"""

from .alert import AlertDefinition, AlertEvent, AlertMetric, AlertOperator
from .metrics import MetricSnapshot
from .scaling import (
    ScalingActionType,
    ScalingDirection,
    ScalingEvent,
    ScalingEventStatus,
    ScalingMetric,
    ScalingPolicy,
)
from .server import Server

__all__ = [
    "Server",
    "MetricSnapshot",
    "AlertDefinition",
    "AlertEvent",
    "AlertMetric",
    "AlertOperator",
    "ScalingPolicy",
    "ScalingEvent",
    "ScalingDirection",
    "ScalingMetric",
    "ScalingActionType",
    "ScalingEventStatus",
]
