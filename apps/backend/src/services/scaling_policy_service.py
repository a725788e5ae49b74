"""
Scaling Policy Service

Operator-facing management of scaling policies: validation and CRUD,
aggregate statistics, and suggested target configurations for a server.
"""

from datetime import datetime, timedelta
import logging
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.backend.src.core.exceptions import (
    PolicyValidationError,
    ResourceNotFoundError,
    ServerNotFoundError,
)
from apps.backend.src.models.scaling import ScalingDirection, ScalingEvent, ScalingEventStatus, ScalingPolicy
from apps.backend.src.models.server import Server
from apps.backend.src.schemas.common import PaginationParams
from apps.backend.src.schemas.scaling import ScalingPolicyCreate, ScalingPolicyUpdate, ScalingStatistics
from apps.backend.src.schemas.server import (
    AvailableConfigurations,
    ConfigurationOption,
    ServerConfiguration,
)
from apps.backend.src.utils.provisioning_client import ProvisioningClient

logger = logging.getLogger(__name__)

MAX_CPU_CORES = 16
MAX_RAM_MB = 32768
MIN_RAM_MB = 1024


def validate_policy(data: ScalingPolicyCreate | dict[str, Any]) -> ScalingPolicyCreate:
    """Return a validated policy or raise PolicyValidationError."""
    if isinstance(data, ScalingPolicyCreate):
        return data
    try:
        return ScalingPolicyCreate.model_validate(data)
    except ValidationError as e:
        errors = e.errors(include_url=False, include_context=False)
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise PolicyValidationError(
            f"Invalid scaling policy: {first.get('msg', 'validation failed')}",
            field=field,
            errors=errors,
        ) from e


def configuration_options(current: ServerConfiguration) -> tuple[list[ConfigurationOption], list[ConfigurationOption]]:
    """Scale-up and scale-down suggestions derived from the current size."""
    cores = current.cpu_cores or 1
    ram = current.ram_mb or MIN_RAM_MB
    base = {"product_id": current.product_id, "disk_mb": current.disk_mb}

    scale_up = [
        ConfigurationOption(
            name="CPU Upgrade",
            description="Double CPU cores",
            configuration=ServerConfiguration(**base, cpu_cores=min(cores * 2, MAX_CPU_CORES), ram_mb=ram),
        ),
        ConfigurationOption(
            name="Memory Upgrade",
            description="Double memory",
            configuration=ServerConfiguration(**base, cpu_cores=cores, ram_mb=min(ram * 2, MAX_RAM_MB)),
        ),
        ConfigurationOption(
            name="Balanced Upgrade",
            description="Upgrade CPU and memory",
            configuration=ServerConfiguration(
                **base, cpu_cores=min(cores * 2, MAX_CPU_CORES), ram_mb=min(ram * 2, MAX_RAM_MB)
            ),
        ),
    ]
    scale_down = [
        ConfigurationOption(
            name="CPU Downgrade",
            description="Reduce CPU cores by half",
            configuration=ServerConfiguration(**base, cpu_cores=max(cores // 2, 1), ram_mb=ram),
        ),
        ConfigurationOption(
            name="Memory Downgrade",
            description="Reduce memory by half",
            configuration=ServerConfiguration(**base, cpu_cores=cores, ram_mb=max(ram // 2, MIN_RAM_MB)),
        ),
    ]
    return scale_up, scale_down


class ScalingPolicyService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provisioning_client: ProvisioningClient | None = None,
    ):
        self.session_factory = session_factory
        self.provisioning_client = provisioning_client

    async def create_policy(
        self, data: ScalingPolicyCreate | dict[str, Any], created_by: str | None = None
    ) -> ScalingPolicy:
        validated = validate_policy(data)

        async with self.session_factory() as db:
            if await db.get(Server, validated.server_id) is None:
                raise ServerNotFoundError(str(validated.server_id))

            values = validated.model_dump(mode="json", exclude={"server_id", "target_configuration"})
            policy = ScalingPolicy(
                **values,
                server_id=validated.server_id,
                target_configuration=validated.target_configuration.model_dump(exclude_none=True),
            )
            if created_by:
                policy.created_by = created_by
            db.add(policy)
            await db.commit()
            await db.refresh(policy)

        logger.info(
            "scaling.policy.created",
            extra={"policy_id": str(policy.id), "server_id": str(policy.server_id), "direction": policy.direction},
        )
        return policy

    async def get_policy(self, policy_id: UUID) -> ScalingPolicy:
        async with self.session_factory() as db:
            policy = await db.get(ScalingPolicy, policy_id)
        if policy is None:
            raise ResourceNotFoundError("ScalingPolicy", str(policy_id))
        return policy

    async def list_policies(
        self, pagination: PaginationParams, server_id: UUID | None = None
    ) -> tuple[list[ScalingPolicy], int]:
        filters = [ScalingPolicy.server_id == server_id] if server_id is not None else []
        async with self.session_factory() as db:
            total = (await db.execute(select(func.count(ScalingPolicy.id)).where(*filters))).scalar_one()
            result = await db.execute(
                select(ScalingPolicy)
                .where(*filters)
                .order_by(ScalingPolicy.created_at.desc())
                .offset(pagination.offset)
                .limit(pagination.page_size)
            )
            return list(result.scalars().all()), total

    async def update_policy(self, policy_id: UUID, data: ScalingPolicyUpdate) -> ScalingPolicy:
        changes = data.model_dump(mode="json", exclude_unset=True, exclude={"target_configuration"})
        if data.target_configuration is not None:
            target = data.target_configuration.model_dump(exclude_none=True)
            if not target:
                raise PolicyValidationError("Target configuration must set at least one field", field="target_configuration")
            changes["target_configuration"] = target

        async with self.session_factory() as db:
            policy = await db.get(ScalingPolicy, policy_id)
            if policy is None:
                raise ResourceNotFoundError("ScalingPolicy", str(policy_id))
            threshold = changes.get("threshold", policy.threshold)
            if policy.metric != "network" and threshold > 100:
                raise PolicyValidationError("Percentage thresholds must not exceed 100", field="threshold", value=threshold)
            for field, value in changes.items():
                setattr(policy, field, value)
            await db.commit()
            await db.refresh(policy)

        logger.info("scaling.policy.updated", extra={"policy_id": str(policy_id), "fields": sorted(changes)})
        return policy

    async def delete_policy(self, policy_id: UUID) -> None:
        """Delete a policy; its scaling events remain with a null policy reference."""
        async with self.session_factory() as db:
            policy = await db.get(ScalingPolicy, policy_id)
            if policy is None:
                raise ResourceNotFoundError("ScalingPolicy", str(policy_id))
            await db.delete(policy)
            await db.commit()
        logger.info("scaling.policy.deleted", extra={"policy_id": str(policy_id)})

    async def get_statistics(self, now: datetime) -> ScalingStatistics:
        async with self.session_factory() as db:
            total_policies = (await db.execute(select(func.count(ScalingPolicy.id)))).scalar_one()
            active_policies = (
                await db.execute(select(func.count(ScalingPolicy.id)).where(ScalingPolicy.is_active.is_(True)))
            ).scalar_one()
            direction_rows = (
                await db.execute(
                    select(ScalingPolicy.direction, func.count(ScalingPolicy.id)).group_by(ScalingPolicy.direction)
                )
            ).all()
            metric_rows = (
                await db.execute(
                    select(ScalingPolicy.metric, func.count(ScalingPolicy.id)).group_by(ScalingPolicy.metric)
                )
            ).all()
            actions_24h = (
                await db.execute(
                    select(func.count(ScalingEvent.id)).where(ScalingEvent.executed_at >= now - timedelta(hours=24))
                )
            ).scalar_one()
            total_events = (await db.execute(select(func.count(ScalingEvent.id)))).scalar_one()
            successful_events = (
                await db.execute(
                    select(func.count(ScalingEvent.id)).where(ScalingEvent.status == ScalingEventStatus.SUCCESS.value)
                )
            ).scalar_one()

        by_direction = dict(direction_rows)
        return ScalingStatistics(
            total_policies=total_policies,
            active_policies=active_policies,
            scale_up_policies=by_direction.get(ScalingDirection.SCALE_UP.value, 0),
            scale_down_policies=by_direction.get(ScalingDirection.SCALE_DOWN.value, 0),
            actions_last_24h=actions_24h,
            success_rate=round(successful_events / total_events * 100, 2) if total_events else 0.0,
            metric_distribution=dict(metric_rows),
        )

    async def get_available_configurations(self, server: Server) -> AvailableConfigurations:
        """Suggest resize targets from the provider's view of the instance."""
        if self.provisioning_client is None:
            raise RuntimeError("Provisioning client is required for configuration suggestions")

        instance = await self.provisioning_client.get_instance(server.provider_instance_id)
        current = ServerConfiguration(
            product_id=instance.get("productId"),
            cpu_cores=instance.get("cpuCores") or 1,
            ram_mb=instance.get("ramMb") or MIN_RAM_MB,
            disk_mb=instance.get("diskMb") or 25600,
        )
        scale_up, scale_down = configuration_options(current)
        return AvailableConfigurations(server_id=server.id, current=current, scale_up=scale_up, scale_down=scale_down)
