"""
Server registry schemas.
"""

from datetime import datetime
from ipaddress import ip_address
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ServerConfiguration(BaseModel):
    """Resource configuration of a server, as recorded and as requested on resize"""

    product_id: str | None = Field(None, max_length=64, description="Provider product identifier")
    cpu_cores: int | None = Field(None, ge=1, le=64, description="Number of vCPU cores")
    ram_mb: int | None = Field(None, ge=512, description="Memory in megabytes")
    disk_mb: int | None = Field(None, ge=1024, description="Disk size in megabytes")

    def to_provider_payload(self) -> dict[str, Any]:
        """Request body for the provider's upgrade endpoint"""
        mapping = {
            "productId": self.product_id,
            "cpuCores": self.cpu_cores,
            "ramMb": self.ram_mb,
            "diskMb": self.disk_mb,
        }
        return {key: value for key, value in mapping.items() if value is not None}


class ServerBase(BaseModel):
    provider_instance_id: str = Field(..., min_length=1, max_length=64, description="Provider instance ID")
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    ip_address: str | None = Field(None, description="Public IP address")
    monitoring_enabled: bool = Field(default=True, description="Whether the control loop samples this server")
    glances_port: int = Field(default=61208, ge=1, le=65535, description="Glances API port")
    glances_url: str | None = Field(None, max_length=512, description="Glances URL override")

    @field_validator("ip_address")
    @classmethod
    def validate_ip_address(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            ip_address(v)
        except ValueError:
            raise ValueError("Invalid IP address format")
        return v


class ServerCreate(ServerBase):
    configuration: ServerConfiguration | None = Field(None, description="Initial resource configuration")


class ServerResponse(ServerBase):
    id: UUID
    status: str
    configuration: dict[str, Any] | None = None
    last_seen: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ConfigurationOption(BaseModel):
    """Suggested target configuration"""

    name: str
    description: str
    configuration: ServerConfiguration


class AvailableConfigurations(BaseModel):
    server_id: UUID
    current: ServerConfiguration
    scale_up: list[ConfigurationOption] = Field(default_factory=list)
    scale_down: list[ConfigurationOption] = Field(default_factory=list)


class ManualScalingRequest(BaseModel):
    target_configuration: ServerConfiguration
    requested_by: str | None = Field(None, max_length=100)

    @field_validator("target_configuration")
    @classmethod
    def validate_target_not_empty(cls, v: ServerConfiguration) -> ServerConfiguration:
        if not v.to_provider_payload():
            raise ValueError("Target configuration must set at least one field")
        return v
