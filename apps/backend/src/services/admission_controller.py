"""
Admission Controller

Gates scaling actions on two limits: the policy's cooldown period since its
last successful action, and its maximum number of successful actions per
calendar day. Admission ends with an atomic claim on the policy so that at
most one worker executes it at a time.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from zoneinfo import ZoneInfo

from apps.backend.src.core.clock import Clock
from apps.backend.src.core.logging import get_audit_logger
from apps.backend.src.models.scaling import ScalingPolicy
from apps.backend.src.services.scaling_ledger import ScalingLedger

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()

REASON_COOLDOWN = "cooldown"
REASON_QUOTA = "quota"
REASON_CLAIMED = "claimed"


@dataclass(frozen=True)
class AdmissionDecision:
    admitted: bool
    reason: str | None = None
    successes_today: int = 0


def day_bounds(now: datetime, tz_name: str = "UTC") -> tuple[datetime, datetime]:
    """Start and end (exclusive) of the calendar day containing ``now``, in UTC."""
    local_now = now.astimezone(ZoneInfo(tz_name))
    start_local = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    next_day = (start_local + timedelta(days=1)).date()
    end_local = datetime(next_day.year, next_day.month, next_day.day, tzinfo=start_local.tzinfo)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)


def decide(
    now: datetime,
    last_triggered: datetime | None,
    cooldown_period: int,
    successes_today: int,
    max_actions_per_day: int,
) -> AdmissionDecision:
    """Pure admission rule; identical inputs always give identical decisions."""
    if last_triggered is not None and now < last_triggered + timedelta(seconds=cooldown_period):
        return AdmissionDecision(False, REASON_COOLDOWN, successes_today)
    if successes_today >= max_actions_per_day:
        return AdmissionDecision(False, REASON_QUOTA, successes_today)
    return AdmissionDecision(True, None, successes_today)


class AdmissionController:
    def __init__(
        self,
        ledger: ScalingLedger,
        clock: Clock,
        quota_timezone: str = "UTC",
        claim_ttl_seconds: float = 180,
    ):
        self.ledger = ledger
        self.clock = clock
        self.quota_timezone = quota_timezone
        self.claim_ttl_seconds = claim_ttl_seconds

    async def admit(self, policy: ScalingPolicy) -> AdmissionDecision:
        """Decide for ``policy`` and, when admitted, hold its execution claim.

        The caller must finish the action through the ledger, which releases
        the claim on both success and failure.
        """
        now = self.clock.now()
        day_start, day_end = day_bounds(now, self.quota_timezone)

        successes = await self.ledger.count_successful_events(policy.id, day_start, day_end)
        decision = decide(now, policy.last_triggered, policy.cooldown_period, successes, policy.max_actions_per_day)
        if not decision.admitted:
            self._audit(policy, decision)
            return decision

        claimed = await self.ledger.try_claim(
            policy.id,
            now,
            cooldown_cutoff=now - timedelta(seconds=policy.cooldown_period),
            stale_cutoff=now - timedelta(seconds=self.claim_ttl_seconds),
        )
        if not claimed:
            decision = AdmissionDecision(False, REASON_CLAIMED, successes)
            self._audit(policy, decision)
            return decision

        # Another worker may have completed an action between the count and the claim
        successes = await self.ledger.count_successful_events(policy.id, day_start, day_end)
        if successes >= policy.max_actions_per_day:
            await self.ledger.release_claim(policy.id)
            decision = AdmissionDecision(False, REASON_QUOTA, successes)
            self._audit(policy, decision)
            return decision

        decision = AdmissionDecision(True, None, successes)
        self._audit(policy, decision)
        return decision

    def _audit(self, policy: ScalingPolicy, decision: AdmissionDecision) -> None:
        audit_logger.info(
            "scaling.admission",
            extra={
                "policy_id": str(policy.id),
                "server_id": str(policy.server_id),
                "admitted": decision.admitted,
                "reason": decision.reason,
                "successes_today": decision.successes_today,
                "max_actions_per_day": policy.max_actions_per_day,
            },
        )
