"""
Server API Endpoints

Registration of tracked servers, metric history and uptime, configuration
suggestions and operator-requested scaling.
"""

import logging
import time
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query

from apps.backend.src.api.common import (
    get_clock,
    get_control_loop,
    get_current_user,
    get_metric_store,
    get_policy_service,
    get_server_registry,
)
from apps.backend.src.core.clock import Clock
from apps.backend.src.schemas.common import (
    DeletedResponse,
    OperationResult,
    PaginatedResponse,
    PaginationParams,
)
from apps.backend.src.schemas.metrics import MetricsHistory, MetricSnapshotData, TimeRange, UptimeStatistics
from apps.backend.src.schemas.server import (
    AvailableConfigurations,
    ManualScalingRequest,
    ServerCreate,
    ServerResponse,
)
from apps.backend.src.services.control_loop import ControlLoopDriver
from apps.backend.src.services.metric_store import MetricStore
from apps.backend.src.services.scaling_policy_service import ScalingPolicyService
from apps.backend.src.services.server_registry import ServerRegistry
from apps.backend.src.utils.exception_handling import handle_exceptions

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=PaginatedResponse[ServerResponse])
@handle_exceptions(message="Failed to list servers")
async def list_servers(
    pagination: PaginationParams = Depends(),
    registry: ServerRegistry = Depends(get_server_registry),
    current_user: dict | None = Depends(get_current_user),
) -> PaginatedResponse[ServerResponse]:
    servers, total = await registry.list_servers(pagination)
    items = [ServerResponse.model_validate(server) for server in servers]
    return PaginatedResponse[ServerResponse].build(items, total, pagination)


@router.post("", response_model=ServerResponse, status_code=201)
@handle_exceptions(message="Failed to create server")
async def create_server(
    server_data: ServerCreate,
    registry: ServerRegistry = Depends(get_server_registry),
    current_user: dict | None = Depends(get_current_user),
) -> ServerResponse:
    server = await registry.create(server_data)
    return ServerResponse.model_validate(server)


@router.get("/{server_id}", response_model=ServerResponse)
@handle_exceptions(message="Failed to retrieve server")
async def get_server(
    server_id: UUID = Path(..., description="Server ID"),
    registry: ServerRegistry = Depends(get_server_registry),
    current_user: dict | None = Depends(get_current_user),
) -> ServerResponse:
    server = await registry.get(server_id)
    return ServerResponse.model_validate(server)


@router.delete("/{server_id}", response_model=DeletedResponse)
@handle_exceptions(message="Failed to delete server")
async def delete_server(
    server_id: UUID = Path(..., description="Server ID"),
    registry: ServerRegistry = Depends(get_server_registry),
    current_user: dict | None = Depends(get_current_user),
) -> DeletedResponse:
    await registry.delete(server_id)
    return DeletedResponse(id=str(server_id), resource_type="server")


@router.get("/{server_id}/metrics", response_model=MetricsHistory)
@handle_exceptions(message="Failed to retrieve metrics")
async def get_server_metrics(
    server_id: UUID = Path(..., description="Server ID"),
    time_range: TimeRange = Query(TimeRange.ONE_DAY, description="History window"),
    registry: ServerRegistry = Depends(get_server_registry),
    metric_store: MetricStore = Depends(get_metric_store),
    clock: Clock = Depends(get_clock),
    current_user: dict | None = Depends(get_current_user),
) -> MetricsHistory:
    await registry.get(server_id)
    return await metric_store.history(server_id, time_range.value, clock.now())


@router.get("/{server_id}/metrics/latest", response_model=MetricSnapshotData | None)
@handle_exceptions(message="Failed to retrieve latest metrics")
async def get_latest_metrics(
    server_id: UUID = Path(..., description="Server ID"),
    registry: ServerRegistry = Depends(get_server_registry),
    metric_store: MetricStore = Depends(get_metric_store),
    current_user: dict | None = Depends(get_current_user),
) -> MetricSnapshotData | None:
    await registry.get(server_id)
    return await metric_store.latest(server_id)


@router.get("/{server_id}/uptime", response_model=UptimeStatistics)
@handle_exceptions(message="Failed to retrieve uptime statistics")
async def get_server_uptime(
    server_id: UUID = Path(..., description="Server ID"),
    days: int = Query(30, ge=1, le=30, description="Period in days"),
    registry: ServerRegistry = Depends(get_server_registry),
    metric_store: MetricStore = Depends(get_metric_store),
    clock: Clock = Depends(get_clock),
    current_user: dict | None = Depends(get_current_user),
) -> UptimeStatistics:
    await registry.get(server_id)
    return await metric_store.uptime_statistics(server_id, clock.now(), days=days)


@router.get("/{server_id}/scaling-options", response_model=AvailableConfigurations)
@handle_exceptions(message="Failed to retrieve scaling options")
async def get_scaling_options(
    server_id: UUID = Path(..., description="Server ID"),
    registry: ServerRegistry = Depends(get_server_registry),
    policy_service: ScalingPolicyService = Depends(get_policy_service),
    current_user: dict | None = Depends(get_current_user),
) -> AvailableConfigurations:
    server = await registry.get(server_id)
    return await policy_service.get_available_configurations(server)


@router.post("/{server_id}/scale", response_model=OperationResult[dict])
@handle_exceptions(message="Failed to scale server")
async def scale_server(
    request_data: ManualScalingRequest,
    server_id: UUID = Path(..., description="Server ID"),
    control_loop: ControlLoopDriver = Depends(get_control_loop),
    current_user: dict | None = Depends(get_current_user),
) -> OperationResult[dict]:
    start_time = time.time()
    result = await control_loop.executor.execute_manual(
        server_id, request_data.target_configuration, requested_by=request_data.requested_by
    )
    return OperationResult[dict](
        success=result.success,
        operation_id=str(result.event_id),
        operation_type="manual_scale",
        result={"new_configuration": result.new_configuration} if result.success else None,
        error_message=result.error,
        execution_time_ms=int((time.time() - start_time) * 1000),
    )
