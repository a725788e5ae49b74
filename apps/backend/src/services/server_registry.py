"""
Server Registry

Tracked servers, their recorded configuration and last observed status.
"""

from datetime import datetime
import logging
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.backend.src.core.exceptions import (
    DatabaseOperationError,
    PolicyValidationError,
    ServerNotFoundError,
)
from apps.backend.src.models.server import Server
from apps.backend.src.schemas.common import PaginationParams
from apps.backend.src.schemas.server import ServerCreate

logger = logging.getLogger(__name__)


class ServerRegistry:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_monitored(self) -> list[Server]:
        """All servers with monitoring enabled"""
        stmt = select(Server).where(Server.monitoring_enabled.is_(True)).order_by(Server.name)
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise DatabaseOperationError(f"Failed to list servers: {e}", operation="server_list") from e

    async def list_servers(self, pagination: PaginationParams) -> tuple[list[Server], int]:
        async with self.session_factory() as db:
            total = (await db.execute(select(func.count(Server.id)))).scalar_one()
            result = await db.execute(
                select(Server).order_by(Server.name).offset(pagination.offset).limit(pagination.page_size)
            )
            return list(result.scalars().all()), total

    async def get(self, server_id: UUID) -> Server:
        async with self.session_factory() as db:
            server = await db.get(Server, server_id)
        if server is None:
            raise ServerNotFoundError(str(server_id))
        return server

    async def create(self, data: ServerCreate, created_by: str | None = None) -> Server:
        values = data.model_dump(exclude={"configuration"})
        configuration = data.configuration.model_dump(exclude_none=True) if data.configuration else None
        server = Server(**values, configuration=configuration, created_by=created_by)
        try:
            async with self.session_factory() as db:
                db.add(server)
                await db.commit()
                await db.refresh(server)
        except IntegrityError as e:
            raise PolicyValidationError(
                "Server with this provider instance id already exists",
                field="provider_instance_id",
                value=data.provider_instance_id,
            ) from e

        logger.info("server.created", extra={"server_id": str(server.id), "server_name": server.name})
        return server

    async def update_status(self, server_id: UUID, status: str, seen_at: datetime | None = None) -> None:
        values: dict[str, Any] = {"status": status}
        if seen_at is not None:
            values["last_seen"] = seen_at
        async with self.session_factory() as db:
            await db.execute(update(Server).where(Server.id == server_id).values(**values))
            await db.commit()

    async def delete(self, server_id: UUID) -> None:
        async with self.session_factory() as db:
            server = await db.get(Server, server_id)
            if server is None:
                raise ServerNotFoundError(str(server_id))
            await db.delete(server)
            await db.commit()
        logger.info("server.deleted", extra={"server_id": str(server_id)})
