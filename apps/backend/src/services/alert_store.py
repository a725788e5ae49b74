"""
Alert Store

Persistence for alert definitions and alert events.
"""

from datetime import datetime
import logging
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import desc, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.backend.src.core.exceptions import (
    DatabaseOperationError,
    PolicyValidationError,
    ResourceNotFoundError,
)
from apps.backend.src.models.alert import AlertDefinition, AlertEvent
from apps.backend.src.schemas.alert import AlertDefinitionCreate, AlertDefinitionUpdate
from apps.backend.src.schemas.common import PaginationParams

logger = logging.getLogger(__name__)


class AlertStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_active(self) -> list[AlertDefinition]:
        stmt = select(AlertDefinition).where(AlertDefinition.is_active.is_(True))
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise DatabaseOperationError(
                f"Failed to list alert definitions: {e}", operation="alert_list"
            ) from e

    async def record_firing(self, event: AlertEvent) -> None:
        """Insert the event and bump the definition's counters in one transaction."""
        async with self.session_factory() as db:
            db.add(event)
            await db.execute(
                update(AlertDefinition)
                .where(AlertDefinition.id == event.alert_id)
                .values(
                    trigger_count=AlertDefinition.trigger_count + 1,
                    last_triggered=event.triggered_at,
                )
            )
            await db.commit()

    async def get(self, alert_id: UUID) -> AlertDefinition:
        async with self.session_factory() as db:
            definition = await db.get(AlertDefinition, alert_id)
        if definition is None:
            raise ResourceNotFoundError("AlertDefinition", str(alert_id))
        return definition

    async def list_definitions(
        self, pagination: PaginationParams, server_id: UUID | None = None
    ) -> tuple[list[AlertDefinition], int]:
        stmt = select(AlertDefinition)
        count_stmt = select(func.count(AlertDefinition.id))
        if server_id is not None:
            stmt = stmt.where(AlertDefinition.server_id == server_id)
            count_stmt = count_stmt.where(AlertDefinition.server_id == server_id)

        async with self.session_factory() as db:
            total = (await db.execute(count_stmt)).scalar_one()
            result = await db.execute(
                stmt.order_by(AlertDefinition.name).offset(pagination.offset).limit(pagination.page_size)
            )
            return list(result.scalars().all()), total

    async def create(self, data: AlertDefinitionCreate | dict) -> AlertDefinition:
        if isinstance(data, dict):
            try:
                data = AlertDefinitionCreate.model_validate(data)
            except ValidationError as e:
                raise PolicyValidationError(
                    "Invalid alert definition", errors=e.errors(include_url=False, include_context=False)
                ) from e

        definition = AlertDefinition(**data.model_dump(mode="json"))
        definition.server_id = data.server_id
        async with self.session_factory() as db:
            db.add(definition)
            await db.commit()
            await db.refresh(definition)

        logger.info("alert.definition.created", extra={"alert_id": str(definition.id), "metric": definition.metric})
        return definition

    async def update(self, alert_id: UUID, data: AlertDefinitionUpdate) -> AlertDefinition:
        changes = data.model_dump(mode="json", exclude_unset=True)
        async with self.session_factory() as db:
            definition = await db.get(AlertDefinition, alert_id)
            if definition is None:
                raise ResourceNotFoundError("AlertDefinition", str(alert_id))
            for field, value in changes.items():
                setattr(definition, field, value)
            await db.commit()
            await db.refresh(definition)
        return definition

    async def delete(self, alert_id: UUID) -> None:
        async with self.session_factory() as db:
            definition = await db.get(AlertDefinition, alert_id)
            if definition is None:
                raise ResourceNotFoundError("AlertDefinition", str(alert_id))
            await db.delete(definition)
            await db.commit()

    async def list_events(
        self,
        pagination: PaginationParams,
        alert_id: UUID | None = None,
        server_id: UUID | None = None,
        since: datetime | None = None,
    ) -> tuple[list[AlertEvent], int]:
        filters = []
        if alert_id is not None:
            filters.append(AlertEvent.alert_id == alert_id)
        if server_id is not None:
            filters.append(AlertEvent.server_id == server_id)
        if since is not None:
            filters.append(AlertEvent.triggered_at >= since)

        async with self.session_factory() as db:
            total = (await db.execute(select(func.count(AlertEvent.id)).where(*filters))).scalar_one()
            result = await db.execute(
                select(AlertEvent)
                .where(*filters)
                .order_by(desc(AlertEvent.triggered_at))
                .offset(pagination.offset)
                .limit(pagination.page_size)
            )
            return list(result.scalars().all()), total
