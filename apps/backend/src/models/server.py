"""
Server registry model for provisioned virtual servers.
"""

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from apps.backend.src.core.database import Base


class Server(Base):
    """Tracked virtual server"""

    __tablename__ = "servers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Provider identity
    provider_instance_id = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    ip_address = Column(String(45), nullable=True)

    # running, stopped, provisioning, unknown, ...
    status = Column(String(32), default="unknown", nullable=False, index=True)

    # Current resource configuration: product_id, cpu_cores, ram_mb, disk_mb
    configuration = Column(JSONB, nullable=True)

    monitoring_enabled = Column(Boolean, default=True, nullable=False, index=True)
    last_seen = Column(DateTime(timezone=True), nullable=True)

    # Glances API configuration
    glances_port = Column(Integer, default=61208, nullable=False)
    glances_url = Column(String(512), nullable=True)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=func.now())
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    scaling_policies = relationship(
        "ScalingPolicy", back_populates="server", passive_deletes=True
    )

    @property
    def glances_endpoint(self) -> str:
        """Get Glances API endpoint URL"""
        if self.glances_url:
            return self.glances_url
        return f"http://{self.ip_address}:{self.glances_port}"
