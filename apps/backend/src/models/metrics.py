"""
Time-series model for per-server telemetry snapshots.
"""

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Float, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID

from apps.backend.src.core.database import Base


class MetricSnapshot(Base):
    """One sample of a server's utilization.

    Rows are immutable. Utilization columns are null when the server was
    reported offline or when the metrics agent omitted a plugin.
    """

    __tablename__ = "metric_snapshots"

    time = Column(DateTime(timezone=True), primary_key=True, nullable=False)
    server_id = Column(
        UUID(as_uuid=True),
        ForeignKey("servers.id", ondelete="CASCADE"),
        primary_key=True,
        nullable=False,
    )

    # CPU metrics
    cpu_usage_percent = Column(Float)
    load_average_1m = Column(Float)

    # Memory metrics
    memory_total_bytes = Column(BigInteger)
    memory_used_bytes = Column(BigInteger)
    memory_usage_percent = Column(Float)

    # Disk metrics
    disk_total_bytes = Column(BigInteger)
    disk_used_bytes = Column(BigInteger)
    disk_usage_percent = Column(Float)

    # Cumulative interface counters
    network_bytes_in = Column(BigInteger)
    network_bytes_out = Column(BigInteger)

    uptime_seconds = Column(BigInteger)
    response_time_ms = Column(Float)
    is_online = Column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("ix_metric_snapshots_server_time", "server_id", "time"),)
