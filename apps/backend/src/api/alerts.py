"""
Alert API Endpoints

Operator CRUD for alert definitions and the history of fired alerts.
"""

from datetime import datetime
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query

from apps.backend.src.api.common import get_alert_store, get_current_user
from apps.backend.src.schemas.alert import (
    AlertDefinitionCreate,
    AlertDefinitionResponse,
    AlertDefinitionUpdate,
    AlertEventResponse,
)
from apps.backend.src.schemas.common import DeletedResponse, PaginatedResponse, PaginationParams
from apps.backend.src.services.alert_store import AlertStore
from apps.backend.src.utils.exception_handling import handle_exceptions

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=PaginatedResponse[AlertDefinitionResponse])
@handle_exceptions(message="Failed to list alert definitions")
async def list_alerts(
    pagination: PaginationParams = Depends(),
    server_id: UUID | None = Query(None, description="Filter by server"),
    store: AlertStore = Depends(get_alert_store),
    current_user: dict | None = Depends(get_current_user),
) -> PaginatedResponse[AlertDefinitionResponse]:
    definitions, total = await store.list_definitions(pagination, server_id=server_id)
    items = [AlertDefinitionResponse.model_validate(d) for d in definitions]
    return PaginatedResponse[AlertDefinitionResponse].build(items, total, pagination)


@router.post("", response_model=AlertDefinitionResponse, status_code=201)
@handle_exceptions(message="Failed to create alert definition")
async def create_alert(
    alert_data: AlertDefinitionCreate,
    store: AlertStore = Depends(get_alert_store),
    current_user: dict | None = Depends(get_current_user),
) -> AlertDefinitionResponse:
    definition = await store.create(alert_data)
    return AlertDefinitionResponse.model_validate(definition)


# Declared before /{alert_id} so "events" is not parsed as an ID
@router.get("/events", response_model=PaginatedResponse[AlertEventResponse])
@handle_exceptions(message="Failed to list alert events")
async def list_alert_events(
    pagination: PaginationParams = Depends(),
    alert_id: UUID | None = Query(None, description="Filter by alert definition"),
    server_id: UUID | None = Query(None, description="Filter by server"),
    since: datetime | None = Query(None, description="Only events at or after this time"),
    store: AlertStore = Depends(get_alert_store),
    current_user: dict | None = Depends(get_current_user),
) -> PaginatedResponse[AlertEventResponse]:
    events, total = await store.list_events(pagination, alert_id=alert_id, server_id=server_id, since=since)
    items = [AlertEventResponse.model_validate(e) for e in events]
    return PaginatedResponse[AlertEventResponse].build(items, total, pagination)


@router.get("/{alert_id}", response_model=AlertDefinitionResponse)
@handle_exceptions(message="Failed to retrieve alert definition")
async def get_alert(
    alert_id: UUID = Path(..., description="Alert definition ID"),
    store: AlertStore = Depends(get_alert_store),
    current_user: dict | None = Depends(get_current_user),
) -> AlertDefinitionResponse:
    return AlertDefinitionResponse.model_validate(await store.get(alert_id))


@router.put("/{alert_id}", response_model=AlertDefinitionResponse)
@handle_exceptions(message="Failed to update alert definition")
async def update_alert(
    alert_update: AlertDefinitionUpdate,
    alert_id: UUID = Path(..., description="Alert definition ID"),
    store: AlertStore = Depends(get_alert_store),
    current_user: dict | None = Depends(get_current_user),
) -> AlertDefinitionResponse:
    definition = await store.update(alert_id, alert_update)
    return AlertDefinitionResponse.model_validate(definition)


@router.delete("/{alert_id}", response_model=DeletedResponse)
@handle_exceptions(message="Failed to delete alert definition")
async def delete_alert(
    alert_id: UUID = Path(..., description="Alert definition ID"),
    store: AlertStore = Depends(get_alert_store),
    current_user: dict | None = Depends(get_current_user),
) -> DeletedResponse:
    await store.delete(alert_id)
    return DeletedResponse(id=str(alert_id), resource_type="alert_definition")
