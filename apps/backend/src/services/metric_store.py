"""
Metric Store

Append-only per-server time series of telemetry snapshots, with retention
purging and history summaries for the API.
"""

from datetime import datetime, timedelta
import logging
from statistics import fmean
from typing import Iterable
from uuid import UUID

from sqlalchemy import delete, desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.backend.src.core.exceptions import DatabaseOperationError
from apps.backend.src.models.metrics import MetricSnapshot
from apps.backend.src.schemas.metrics import (
    TIME_RANGE_SECONDS,
    MetricSnapshotData,
    MetricsHistory,
    MetricStats,
    MetricsSummary,
    TimeRange,
    UptimeStatistics,
)

logger = logging.getLogger(__name__)


def _stats(values: Iterable[float | None]) -> MetricStats:
    present = [float(v) for v in values if v is not None]
    if not present:
        return MetricStats()
    return MetricStats(avg=round(fmean(present), 2), max=max(present), min=min(present))


def summarize_snapshots(snapshots: list[MetricSnapshotData]) -> MetricsSummary:
    """Average, maximum and minimum per metric plus the online ratio."""
    if not snapshots:
        return MetricsSummary()
    online = sum(1 for s in snapshots if s.is_online)
    return MetricsSummary(
        data_points=len(snapshots),
        cpu=_stats(s.cpu_usage_percent for s in snapshots),
        memory=_stats(s.memory_usage_percent for s in snapshots),
        disk=_stats(s.disk_usage_percent for s in snapshots),
        response_time=_stats(s.response_time_ms for s in snapshots),
        online_ratio=round(online / len(snapshots), 4),
    )


def parse_time_range(value: str | None) -> TimeRange:
    """Unknown ranges fall back to the last 24 hours."""
    try:
        return TimeRange(value)
    except ValueError:
        return TimeRange.ONE_DAY


class MetricStore:
    """Snapshot persistence backed by the ``metric_snapshots`` table"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def append(self, snapshot: MetricSnapshotData) -> None:
        row = MetricSnapshot(**snapshot.model_dump())
        try:
            async with self.session_factory() as db:
                db.add(row)
                await db.commit()
        except SQLAlchemyError as e:
            raise DatabaseOperationError(
                f"Failed to store snapshot: {e}", operation="metric_append",
                details={"server_id": str(snapshot.server_id)},
            ) from e

    async def query(self, server_id: UUID, since: datetime, until: datetime) -> list[MetricSnapshotData]:
        """Snapshots with ``since <= time <= until``, oldest first."""
        stmt = (
            select(MetricSnapshot)
            .where(
                MetricSnapshot.server_id == server_id,
                MetricSnapshot.time >= since,
                MetricSnapshot.time <= until,
            )
            .order_by(MetricSnapshot.time)
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise DatabaseOperationError(f"Failed to query snapshots: {e}", operation="metric_query") from e
        return [MetricSnapshotData.model_validate(row) for row in rows]

    async def latest(self, server_id: UUID) -> MetricSnapshotData | None:
        stmt = (
            select(MetricSnapshot)
            .where(MetricSnapshot.server_id == server_id)
            .order_by(desc(MetricSnapshot.time))
            .limit(1)
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseOperationError(f"Failed to read latest snapshot: {e}", operation="metric_latest") from e
        return MetricSnapshotData.model_validate(row) if row is not None else None

    async def purge_older_than(self, cutoff: datetime) -> int:
        """Delete snapshots older than ``cutoff``; returns the number removed."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(delete(MetricSnapshot).where(MetricSnapshot.time < cutoff))
                await db.commit()
        except SQLAlchemyError as e:
            raise DatabaseOperationError(f"Failed to purge snapshots: {e}", operation="metric_purge") from e

        purged = result.rowcount or 0
        logger.info("metrics.purged", extra={"cutoff": cutoff.isoformat(), "rows": purged})
        return purged

    async def history(self, server_id: UUID, time_range: str | None, now: datetime) -> MetricsHistory:
        selected = parse_time_range(time_range)
        since = now - timedelta(seconds=TIME_RANGE_SECONDS[selected])
        snapshots = await self.query(server_id, since, now)
        return MetricsHistory(
            server_id=server_id,
            time_range=selected,
            since=since,
            until=now,
            snapshots=snapshots,
            summary=summarize_snapshots(snapshots),
        )

    async def uptime_statistics(self, server_id: UUID, now: datetime, days: int = 30) -> UptimeStatistics:
        snapshots = await self.query(server_id, now - timedelta(days=days), now)
        online = sum(1 for s in snapshots if s.is_online)
        return UptimeStatistics(
            server_id=server_id,
            period_days=days,
            total_checks=len(snapshots),
            online_checks=online,
            uptime_percent=round(online / len(snapshots) * 100, 2) if snapshots else None,
        )
