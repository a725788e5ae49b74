"""
Unit tests for the admission controller: cooldown, daily quota and claims
"""

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from apps.backend.src.models.scaling import ScalingEvent, ScalingEventStatus
from apps.backend.src.services.admission_controller import (
    REASON_CLAIMED,
    REASON_COOLDOWN,
    REASON_QUOTA,
    AdmissionController,
    day_bounds,
    decide,
)
from conftest import T0, make_policy, make_server


def _success_event(policy, executed_at, status=ScalingEventStatus.SUCCESS.value):
    return ScalingEvent(
        id=uuid4(),
        policy_id=policy.id,
        server_id=policy.server_id,
        action_type=policy.direction,
        status=status,
        executed_at=executed_at,
        completed_at=executed_at,
    )


@pytest.fixture
def policy(ledger):
    return ledger.add_policy(make_policy(make_server(), cooldown_period=1800, max_actions_per_day=2))


@pytest.fixture
def controller(ledger, clock):
    return AdmissionController(ledger, clock, quota_timezone="UTC", claim_ttl_seconds=180)


class TestDecide:
    def test_admits_without_history(self):
        decision = decide(T0, None, 1800, 0, 3)
        assert decision.admitted
        assert decision.reason is None

    def test_cooldown_blocks_until_boundary(self):
        last = T0 - timedelta(seconds=1799)
        assert decide(T0, last, 1800, 0, 3).reason == REASON_COOLDOWN

    def test_cooldown_boundary_is_admitted(self):
        last = T0 - timedelta(seconds=1800)
        assert decide(T0, last, 1800, 0, 3).admitted

    def test_quota_reached(self):
        decision = decide(T0, None, 1800, 3, 3)
        assert not decision.admitted
        assert decision.reason == REASON_QUOTA
        assert decision.successes_today == 3

    def test_cooldown_reported_before_quota(self):
        decision = decide(T0, T0 - timedelta(seconds=10), 1800, 5, 3)
        assert decision.reason == REASON_COOLDOWN


class TestDayBounds:
    def test_utc_day(self):
        start, end = day_bounds(datetime(2026, 3, 2, 23, 59, tzinfo=timezone.utc))
        assert start == datetime(2026, 3, 2, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 3, tzinfo=timezone.utc)

    def test_configured_timezone(self):
        # 23:30 UTC on March 2 is already March 3 in Berlin (UTC+1)
        start, end = day_bounds(datetime(2026, 3, 2, 23, 30, tzinfo=timezone.utc), "Europe/Berlin")
        assert start == datetime(2026, 3, 2, 23, 0, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 3, 23, 0, tzinfo=timezone.utc)

    def test_dst_transition_day_is_23_hours(self):
        start, end = day_bounds(datetime(2026, 3, 29, 12, 0, tzinfo=timezone.utc), "Europe/Berlin")
        assert end - start == timedelta(hours=23)


class TestAdmissionController:
    async def test_admits_and_claims(self, controller, ledger, policy, clock):
        decision = await controller.admit(policy)

        assert decision.admitted
        assert policy.claimed_at == clock.now()

    async def test_second_worker_sees_claim(self, controller, policy):
        first = await controller.admit(policy)
        second = await controller.admit(policy)

        assert first.admitted
        assert not second.admitted
        assert second.reason == REASON_CLAIMED

    async def test_concurrent_admissions_admit_once(self, controller, policy):
        decisions = await asyncio.gather(*(controller.admit(policy) for _ in range(5)))

        assert sum(1 for d in decisions if d.admitted) == 1

    async def test_stale_claim_can_be_taken_over(self, controller, policy, clock):
        policy.claimed_at = clock.now() - timedelta(seconds=181)

        decision = await controller.admit(policy)

        assert decision.admitted

    async def test_cooldown_blocks(self, controller, policy, clock):
        policy.last_triggered = clock.now() - timedelta(seconds=600)

        decision = await controller.admit(policy)

        assert not decision.admitted
        assert decision.reason == REASON_COOLDOWN
        assert policy.claimed_at is None

    async def test_quota_counts_only_todays_successes(self, controller, ledger, policy, clock):
        yesterday = clock.now() - timedelta(days=1)
        ledger.events.update(
            {
                e.id: e
                for e in [
                    _success_event(policy, yesterday),
                    _success_event(policy, yesterday + timedelta(minutes=5)),
                    _success_event(policy, clock.now() - timedelta(hours=3)),
                    _success_event(policy, clock.now() - timedelta(hours=2), status=ScalingEventStatus.FAILED.value),
                ]
            }
        )

        decision = await controller.admit(policy)

        assert decision.admitted
        assert decision.successes_today == 1

    async def test_quota_blocks(self, controller, ledger, policy, clock):
        for hours in (5, 3):
            event = _success_event(policy, clock.now() - timedelta(hours=hours))
            ledger.events[event.id] = event

        decision = await controller.admit(policy)

        assert not decision.admitted
        assert decision.reason == REASON_QUOTA
        assert decision.successes_today == 2

    async def test_quota_resets_at_midnight(self, controller, ledger, policy, clock):
        clock.current = datetime(2026, 3, 2, 23, 50, tzinfo=timezone.utc)
        for minutes in (40, 20):
            event = _success_event(policy, clock.now() - timedelta(minutes=minutes))
            ledger.events[event.id] = event
        policy.cooldown_period = 300
        policy.last_triggered = clock.now() - timedelta(minutes=20)

        assert (await controller.admit(policy)).reason == REASON_QUOTA

        clock.current = datetime(2026, 3, 3, 0, 5, tzinfo=timezone.utc)
        assert (await controller.admit(policy)).admitted

    async def test_quota_recheck_after_claim_releases(self, controller, ledger, policy, clock):
        real_try_claim = ledger.try_claim

        async def claim_then_race(*args, **kwargs):
            claimed = await real_try_claim(*args, **kwargs)
            # Another worker completed two actions in the meantime
            for minutes in (2, 1):
                event = _success_event(policy, clock.now() - timedelta(minutes=minutes))
                ledger.events[event.id] = event
            return claimed

        ledger.try_claim = claim_then_race

        decision = await controller.admit(policy)

        assert not decision.admitted
        assert decision.reason == REASON_QUOTA
        assert policy.claimed_at is None


class TestDeterminism:
    @pytest.mark.parametrize(
        "last_triggered_ago, successes, max_actions",
        [(None, 0, 3), (600, 0, 3), (1800, 2, 3), (3600, 3, 3), (None, 5, 1)],
    )
    def test_decide_is_pure(self, last_triggered_ago, successes, max_actions):
        last = T0 - timedelta(seconds=last_triggered_ago) if last_triggered_ago is not None else None

        decisions = {decide(T0, last, 1800, successes, max_actions) for _ in range(5)}

        assert len(decisions) == 1

    async def test_admit_repeats_on_identical_state(self, controller, ledger, policy, clock):
        event = _success_event(policy, clock.now() - timedelta(hours=1))
        ledger.events[event.id] = event

        first = await controller.admit(policy)
        policy.claimed_at = None
        second = await controller.admit(policy)

        assert first == second
        assert first.admitted

    async def test_rejection_repeats_on_identical_state(self, controller, policy, clock):
        policy.last_triggered = clock.now() - timedelta(minutes=5)

        decisions = [await controller.admit(policy) for _ in range(3)]

        assert all(d == decisions[0] for d in decisions)
        assert decisions[0].reason == REASON_COOLDOWN
        assert policy.claimed_at is None
