"""
Scaling Executor

Performs an admitted scaling action: records an in-progress audit event,
calls the provider's resize endpoint with a bounded timeout, then completes
the event and the policy state in one transaction.
"""

import asyncio
from dataclasses import dataclass
import logging
from typing import Any
from uuid import UUID, uuid4

from apps.backend.src.core.clock import Clock
from apps.backend.src.core.exceptions import (
    ConfigNotFoundError,
    DatabaseOperationError,
    ExternalServiceError,
    ServerNotFoundError,
)
from apps.backend.src.core.logging import get_audit_logger
from apps.backend.src.models.scaling import ScalingActionType, ScalingEvent, ScalingPolicy
from apps.backend.src.models.server import Server
from apps.backend.src.schemas.server import ServerConfiguration
from apps.backend.src.services.notification_service import NotificationService
from apps.backend.src.services.scaling_evaluator import EvaluationResult
from apps.backend.src.services.scaling_ledger import ScalingLedger
from apps.backend.src.services.server_registry import ServerRegistry
from apps.backend.src.utils.provisioning_client import ProvisioningClient

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()

AUTOSCALER_ACTOR = "autoscaler"
RECORD_SUCCESS_OPERATION = "scaling_record_success"


@dataclass(frozen=True)
class ExecutionResult:
    event_id: UUID
    success: bool
    error: str | None = None
    new_configuration: dict[str, Any] | None = None


class ScalingExecutor:
    def __init__(
        self,
        provisioning_client: ProvisioningClient,
        ledger: ScalingLedger,
        server_registry: ServerRegistry,
        notifier: NotificationService,
        clock: Clock,
        resize_timeout: float = 120.0,
    ):
        self.provisioning_client = provisioning_client
        self.ledger = ledger
        self.server_registry = server_registry
        self.notifier = notifier
        self.clock = clock
        self.resize_timeout = resize_timeout

    async def execute(self, policy: ScalingPolicy, evaluation: EvaluationResult) -> ExecutionResult:
        """Execute an admitted policy. The caller holds the policy's claim.

        Raises:
            ConfigNotFoundError: the policy's server is no longer registered
        """
        try:
            server = await self.server_registry.get(policy.server_id)
        except ServerNotFoundError as e:
            await self.ledger.release_claim(policy.id)
            raise ConfigNotFoundError(str(policy.server_id), policy_id=str(policy.id)) from e

        try:
            return await self._run(
                server,
                policy_id=policy.id,
                action_type=policy.direction,
                target=dict(policy.target_configuration or {}),
                metric_value=evaluation.metric_value,
                threshold_value=policy.threshold,
                triggered_by=AUTOSCALER_ACTOR,
                notification_email=policy.notification_email,
                policy_name=policy.policy_name,
            )
        except DatabaseOperationError as e:
            # The resize already happened; the claim is held until its TTL
            if e.operation != RECORD_SUCCESS_OPERATION:
                await self.ledger.release_claim(policy.id)
            raise
        except Exception:
            await self.ledger.release_claim(policy.id)
            raise

    async def execute_manual(
        self, server_id: UUID, target: ServerConfiguration, requested_by: str | None = None
    ) -> ExecutionResult:
        """Resize a server on operator request, bypassing admission."""
        server = await self.server_registry.get(server_id)
        return await self._run(
            server,
            policy_id=None,
            action_type=ScalingActionType.MANUAL.value,
            target=target.model_dump(exclude_none=True),
            metric_value=None,
            threshold_value=None,
            triggered_by=requested_by or "operator",
            notification_email=None,
            policy_name=None,
        )

    async def _run(
        self,
        server: Server,
        policy_id: UUID | None,
        action_type: str,
        target: dict[str, Any],
        metric_value: float | None,
        threshold_value: float | None,
        triggered_by: str,
        notification_email: str | None,
        policy_name: str | None,
    ) -> ExecutionResult:
        old_configuration = dict(server.configuration or {})
        new_configuration = {**old_configuration, **target}
        payload = ServerConfiguration.model_validate(target).to_provider_payload()
        executed_at = self.clock.now()

        event = await self.ledger.start_event(
            ScalingEvent(
                id=uuid4(),
                policy_id=policy_id,
                server_id=server.id,
                action_type=action_type,
                metric_value=metric_value,
                threshold_value=threshold_value,
                old_configuration=old_configuration,
                new_configuration=new_configuration,
                triggered_by=triggered_by,
                executed_at=executed_at,
            )
        )

        error: str | None = None
        try:
            await asyncio.wait_for(
                self.provisioning_client.upgrade_instance(
                    server.provider_instance_id, payload, timeout=self.resize_timeout
                ),
                timeout=self.resize_timeout,
            )
        except asyncio.TimeoutError:
            error = f"Resize timed out after {self.resize_timeout:g}s"
        except (ExternalServiceError, ServerNotFoundError) as e:
            error = e.message

        completed_at = max(self.clock.now(), executed_at)

        if error is not None:
            await self.ledger.complete_failure(event.id, policy_id, error, completed_at)
            self._audit(event, server, "failed", error)
            return ExecutionResult(event.id, False, error=error)

        try:
            await self.ledger.complete_success(event.id, policy_id, server.id, new_configuration, completed_at)
        except Exception as e:
            logger.error(
                "scaling.record.failed",
                extra={"event_id": str(event.id), "server_id": str(server.id), "error": str(e)},
                exc_info=True,
            )
            raise DatabaseOperationError(
                f"Resize succeeded but could not be recorded: {e}",
                operation=RECORD_SUCCESS_OPERATION,
                details={"event_id": str(event.id)},
            ) from e

        self._audit(event, server, "success", None)

        if notification_email or self.notifier.gotify_enabled:
            try:
                await self.notifier.notify_scaling(
                    notification_email,
                    server_name=server.name,
                    action_type=action_type,
                    policy_name=policy_name,
                    metric_value=metric_value,
                    threshold_value=threshold_value,
                    old_configuration=old_configuration,
                    new_configuration=new_configuration,
                    completed_at=completed_at,
                )
            except Exception as e:
                logger.warning("scaling.notification.failed", extra={"event_id": str(event.id), "error": str(e)})

        return ExecutionResult(event.id, True, new_configuration=new_configuration)

    def _audit(self, event: ScalingEvent, server: Server, status: str, error: str | None) -> None:
        audit_logger.info(
            "scaling.execution",
            extra={
                "event_id": str(event.id),
                "policy_id": str(event.policy_id) if event.policy_id else None,
                "server_id": str(server.id),
                "action_type": event.action_type,
                "status": status,
                "error": error,
                "old_configuration": event.old_configuration,
                "new_configuration": event.new_configuration,
            },
        )
