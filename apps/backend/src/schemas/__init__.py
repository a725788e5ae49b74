"""
Pydantic schemas for request/response validation and API documentation.
"""

from .alert import (
    AlertDefinitionCreate,
    AlertDefinitionResponse,
    AlertDefinitionUpdate,
    AlertEventResponse,
)
from .common import DeletedResponse, HealthCheckResponse, OperationResult, PaginatedResponse, PaginationParams
from .control_loop import AlertStats, ControlLoopStatus, SamplingStats, ScalingStats, TickSummary
from .metrics import (
    MetricSnapshotData,
    MetricsHistory,
    MetricsSummary,
    MetricStats,
    TimeRange,
    UptimeStatistics,
)
from .scaling import (
    ScalingEventResponse,
    ScalingPolicyCreate,
    ScalingPolicyResponse,
    ScalingPolicyUpdate,
    ScalingStatistics,
)
from .server import (
    AvailableConfigurations,
    ConfigurationOption,
    ManualScalingRequest,
    ServerConfiguration,
    ServerCreate,
    ServerResponse,
)

__all__ = [
    "AlertDefinitionCreate",
    "AlertDefinitionResponse",
    "AlertDefinitionUpdate",
    "AlertEventResponse",
    "DeletedResponse",
    "HealthCheckResponse",
    "OperationResult",
    "PaginatedResponse",
    "PaginationParams",
    "AlertStats",
    "ControlLoopStatus",
    "SamplingStats",
    "ScalingStats",
    "TickSummary",
    "MetricSnapshotData",
    "MetricsHistory",
    "MetricsSummary",
    "MetricStats",
    "TimeRange",
    "UptimeStatistics",
    "ScalingEventResponse",
    "ScalingPolicyCreate",
    "ScalingPolicyResponse",
    "ScalingPolicyUpdate",
    "ScalingStatistics",
    "AvailableConfigurations",
    "ConfigurationOption",
    "ManualScalingRequest",
    "ServerConfiguration",
    "ServerCreate",
    "ServerResponse",
]
