"""
Scaling Ledger

Persistence for scaling admission state and the scaling audit log. Every
state change that guards admission is a single conditional UPDATE so that
concurrent workers cannot both act on the same policy.
"""

from datetime import datetime
import logging
from typing import Any
from uuid import UUID

from sqlalchemy import desc, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.backend.src.core.exceptions import DatabaseOperationError
from apps.backend.src.models.scaling import ScalingEvent, ScalingEventStatus, ScalingPolicy
from apps.backend.src.models.server import Server
from apps.backend.src.schemas.common import PaginationParams

logger = logging.getLogger(__name__)

ABANDONED_MESSAGE = "Scaling attempt abandoned without completion"


class ScalingLedger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_active_policies(self) -> list[ScalingPolicy]:
        stmt = select(ScalingPolicy).where(ScalingPolicy.is_active.is_(True))
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise DatabaseOperationError(f"Failed to list scaling policies: {e}", operation="policy_list") from e

    async def count_successful_events(self, policy_id: UUID, start: datetime, end: datetime) -> int:
        """Successful actions of a policy executed in ``[start, end)``."""
        stmt = select(func.count(ScalingEvent.id)).where(
            ScalingEvent.policy_id == policy_id,
            ScalingEvent.status == ScalingEventStatus.SUCCESS.value,
            ScalingEvent.executed_at >= start,
            ScalingEvent.executed_at < end,
        )
        async with self.session_factory() as db:
            return (await db.execute(stmt)).scalar_one()

    async def try_claim(
        self, policy_id: UUID, now: datetime, cooldown_cutoff: datetime, stale_cutoff: datetime
    ) -> bool:
        """Take the execution claim on a policy.

        Succeeds only if the policy is active, not claimed (or the claim is
        older than ``stale_cutoff``) and last triggered at or before
        ``cooldown_cutoff``.
        """
        stmt = (
            update(ScalingPolicy)
            .where(
                ScalingPolicy.id == policy_id,
                ScalingPolicy.is_active.is_(True),
                or_(ScalingPolicy.claimed_at.is_(None), ScalingPolicy.claimed_at < stale_cutoff),
                or_(ScalingPolicy.last_triggered.is_(None), ScalingPolicy.last_triggered <= cooldown_cutoff),
            )
            .values(claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            await db.commit()
        return result.rowcount == 1

    async def release_claim(self, policy_id: UUID) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(ScalingPolicy)
                .where(ScalingPolicy.id == policy_id)
                .values(claimed_at=None)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

    async def start_event(self, event: ScalingEvent) -> ScalingEvent:
        """Insert an in-progress event before the external call is made."""
        event.status = ScalingEventStatus.IN_PROGRESS.value
        try:
            async with self.session_factory() as db:
                db.add(event)
                await db.commit()
                await db.refresh(event)
        except SQLAlchemyError as e:
            raise DatabaseOperationError(f"Failed to record scaling event: {e}", operation="event_start") from e
        return event

    async def complete_success(
        self,
        event_id: UUID,
        policy_id: UUID | None,
        server_id: UUID,
        new_configuration: dict[str, Any],
        completed_at: datetime,
    ) -> None:
        """Mark the event successful and start the policy's cooldown, atomically."""
        async with self.session_factory() as db:
            await db.execute(
                update(ScalingEvent)
                .where(ScalingEvent.id == event_id)
                .values(status=ScalingEventStatus.SUCCESS.value, completed_at=completed_at, error_message=None)
                .execution_options(synchronize_session=False)
            )
            if policy_id is not None:
                await db.execute(
                    update(ScalingPolicy)
                    .where(ScalingPolicy.id == policy_id)
                    .values(
                        last_triggered=completed_at,
                        trigger_count=ScalingPolicy.trigger_count + 1,
                        claimed_at=None,
                    )
                    .execution_options(synchronize_session=False)
                )
            await db.execute(
                update(Server)
                .where(Server.id == server_id)
                .values(configuration=new_configuration)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

    async def complete_failure(
        self, event_id: UUID, policy_id: UUID | None, error_message: str, completed_at: datetime
    ) -> None:
        """Mark the event failed and release the claim; cooldown is untouched."""
        async with self.session_factory() as db:
            await db.execute(
                update(ScalingEvent)
                .where(ScalingEvent.id == event_id)
                .values(
                    status=ScalingEventStatus.FAILED.value,
                    completed_at=completed_at,
                    error_message=error_message[:2000],
                )
                .execution_options(synchronize_session=False)
            )
            if policy_id is not None:
                await db.execute(
                    update(ScalingPolicy)
                    .where(ScalingPolicy.id == policy_id)
                    .values(claimed_at=None)
                    .execution_options(synchronize_session=False)
                )
            await db.commit()

    async def expire_stale_events(self, cutoff: datetime, now: datetime) -> int:
        """Fail in-progress events executed before ``cutoff``."""
        async with self.session_factory() as db:
            result = await db.execute(
                update(ScalingEvent)
                .where(
                    ScalingEvent.status == ScalingEventStatus.IN_PROGRESS.value,
                    ScalingEvent.executed_at < cutoff,
                )
                .values(
                    status=ScalingEventStatus.FAILED.value,
                    completed_at=now,
                    error_message=ABANDONED_MESSAGE,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        expired = result.rowcount or 0
        if expired:
            logger.warning("scaling.events.expired", extra={"count": expired, "cutoff": cutoff.isoformat()})
        return expired

    async def list_events(
        self,
        pagination: PaginationParams,
        policy_id: UUID | None = None,
        server_id: UUID | None = None,
        status: str | None = None,
    ) -> tuple[list[ScalingEvent], int]:
        filters = []
        if policy_id is not None:
            filters.append(ScalingEvent.policy_id == policy_id)
        if server_id is not None:
            filters.append(ScalingEvent.server_id == server_id)
        if status is not None:
            filters.append(ScalingEvent.status == status)

        async with self.session_factory() as db:
            total = (await db.execute(select(func.count(ScalingEvent.id)).where(*filters))).scalar_one()
            result = await db.execute(
                select(ScalingEvent)
                .where(*filters)
                .order_by(desc(ScalingEvent.executed_at))
                .offset(pagination.offset)
                .limit(pagination.page_size)
            )
            return list(result.scalars().all()), total
