"""
Scaling API Endpoints

Scaling policy management, scaling history and aggregate statistics.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query

from apps.backend.src.api.common import (
    get_clock,
    get_current_user,
    get_policy_service,
    get_scaling_ledger,
)
from apps.backend.src.core.clock import Clock
from apps.backend.src.models.scaling import ScalingEventStatus
from apps.backend.src.schemas.common import DeletedResponse, PaginatedResponse, PaginationParams
from apps.backend.src.schemas.scaling import (
    ScalingEventResponse,
    ScalingPolicyCreate,
    ScalingPolicyResponse,
    ScalingPolicyUpdate,
    ScalingStatistics,
)
from apps.backend.src.services.scaling_ledger import ScalingLedger
from apps.backend.src.services.scaling_policy_service import ScalingPolicyService
from apps.backend.src.utils.exception_handling import handle_exceptions

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/policies", response_model=PaginatedResponse[ScalingPolicyResponse])
@handle_exceptions(message="Failed to list scaling policies")
async def list_policies(
    pagination: PaginationParams = Depends(),
    server_id: UUID | None = Query(None, description="Filter by server"),
    service: ScalingPolicyService = Depends(get_policy_service),
    current_user: dict | None = Depends(get_current_user),
) -> PaginatedResponse[ScalingPolicyResponse]:
    policies, total = await service.list_policies(pagination, server_id=server_id)
    items = [ScalingPolicyResponse.model_validate(p) for p in policies]
    return PaginatedResponse[ScalingPolicyResponse].build(items, total, pagination)


@router.post("/policies", response_model=ScalingPolicyResponse, status_code=201)
@handle_exceptions(message="Failed to create scaling policy")
async def create_policy(
    policy_data: ScalingPolicyCreate,
    service: ScalingPolicyService = Depends(get_policy_service),
    current_user: dict | None = Depends(get_current_user),
) -> ScalingPolicyResponse:
    policy = await service.create_policy(policy_data)
    return ScalingPolicyResponse.model_validate(policy)


@router.get("/policies/{policy_id}", response_model=ScalingPolicyResponse)
@handle_exceptions(message="Failed to retrieve scaling policy")
async def get_policy(
    policy_id: UUID = Path(..., description="Scaling policy ID"),
    service: ScalingPolicyService = Depends(get_policy_service),
    current_user: dict | None = Depends(get_current_user),
) -> ScalingPolicyResponse:
    return ScalingPolicyResponse.model_validate(await service.get_policy(policy_id))


@router.put("/policies/{policy_id}", response_model=ScalingPolicyResponse)
@handle_exceptions(message="Failed to update scaling policy")
async def update_policy(
    policy_update: ScalingPolicyUpdate,
    policy_id: UUID = Path(..., description="Scaling policy ID"),
    service: ScalingPolicyService = Depends(get_policy_service),
    current_user: dict | None = Depends(get_current_user),
) -> ScalingPolicyResponse:
    policy = await service.update_policy(policy_id, policy_update)
    return ScalingPolicyResponse.model_validate(policy)


@router.delete("/policies/{policy_id}", response_model=DeletedResponse)
@handle_exceptions(message="Failed to delete scaling policy")
async def delete_policy(
    policy_id: UUID = Path(..., description="Scaling policy ID"),
    service: ScalingPolicyService = Depends(get_policy_service),
    current_user: dict | None = Depends(get_current_user),
) -> DeletedResponse:
    await service.delete_policy(policy_id)
    return DeletedResponse(id=str(policy_id), resource_type="scaling_policy")


@router.get("/events", response_model=PaginatedResponse[ScalingEventResponse])
@handle_exceptions(message="Failed to list scaling events")
async def list_scaling_events(
    pagination: PaginationParams = Depends(),
    policy_id: UUID | None = Query(None, description="Filter by policy"),
    server_id: UUID | None = Query(None, description="Filter by server"),
    status: ScalingEventStatus | None = Query(None, description="Filter by status"),
    ledger: ScalingLedger = Depends(get_scaling_ledger),
    current_user: dict | None = Depends(get_current_user),
) -> PaginatedResponse[ScalingEventResponse]:
    events, total = await ledger.list_events(
        pagination,
        policy_id=policy_id,
        server_id=server_id,
        status=status.value if status else None,
    )
    items = [ScalingEventResponse.model_validate(e) for e in events]
    return PaginatedResponse[ScalingEventResponse].build(items, total, pagination)


@router.get("/statistics", response_model=ScalingStatistics)
@handle_exceptions(message="Failed to compute scaling statistics")
async def get_statistics(
    service: ScalingPolicyService = Depends(get_policy_service),
    clock: Clock = Depends(get_clock),
    current_user: dict | None = Depends(get_current_user),
) -> ScalingStatistics:
    return await service.get_statistics(clock.now())
