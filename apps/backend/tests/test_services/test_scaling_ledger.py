"""
Statement-level tests for the SQL-backed scaling ledger.

The admission claim and the completion updates must be single conditional
statements; these tests compile what the ledger sends with the PostgreSQL
dialect and check the predicates and expressions.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from apps.backend.src.services.scaling_ledger import ABANDONED_MESSAGE, ScalingLedger
from conftest import T0, compile_statement, statement_sql

COOLDOWN_CUTOFF = T0 - timedelta(seconds=1800)
STALE_CUTOFF = T0 - timedelta(seconds=180)


@pytest.fixture
def sql_ledger(db_session_factory):
    return ScalingLedger(db_session_factory)


def _executed(db_session):
    return [call.args[0] for call in db_session.execute.call_args_list]


class TestTryClaim:
    async def test_claim_is_one_conditional_update(self, sql_ledger, db_session):
        policy_id = uuid4()

        claimed = await sql_ledger.try_claim(policy_id, T0, COOLDOWN_CUTOFF, STALE_CUTOFF)

        assert claimed
        [statement] = _executed(db_session)
        sql = statement_sql(statement)
        assert sql.startswith("UPDATE scaling_policies SET claimed_at=")
        assert "scaling_policies.id = " in sql
        assert "scaling_policies.is_active IS true" in sql
        assert "(scaling_policies.claimed_at IS NULL OR scaling_policies.claimed_at < " in sql
        assert "(scaling_policies.last_triggered IS NULL OR scaling_policies.last_triggered <= " in sql

        params = compile_statement(statement).params
        assert params["claimed_at"] == T0
        assert {policy_id, STALE_CUTOFF, COOLDOWN_CUTOFF} <= set(params.values())
        db_session.commit.assert_awaited_once()

    async def test_no_matching_row_means_not_claimed(self, sql_ledger, db_session):
        db_session.execute.return_value.rowcount = 0

        assert not await sql_ledger.try_claim(uuid4(), T0, COOLDOWN_CUTOFF, STALE_CUTOFF)

    async def test_release_clears_claim(self, sql_ledger, db_session):
        await sql_ledger.release_claim(uuid4())

        [statement] = _executed(db_session)
        assert statement_sql(statement).startswith("UPDATE scaling_policies SET claimed_at=")
        db_session.commit.assert_awaited_once()


class TestQuotaCount:
    async def test_counts_successes_in_half_open_day(self, sql_ledger, db_session):
        db_session.execute.return_value.scalar_one.return_value = 2
        policy_id = uuid4()
        day_end = T0 + timedelta(days=1)

        count = await sql_ledger.count_successful_events(policy_id, T0, day_end)

        assert count == 2
        [statement] = _executed(db_session)
        sql = statement_sql(statement)
        assert "count(scaling_events.id)" in sql
        assert "scaling_events.executed_at >= " in sql
        assert "scaling_events.executed_at < " in sql
        assert {policy_id, "success", T0, day_end} <= set(compile_statement(statement).params.values())


class TestCompletion:
    async def test_success_is_one_transaction(self, sql_ledger, db_session_factory, db_session):
        event_id, policy_id, server_id = uuid4(), uuid4(), uuid4()
        completed_at = T0 + timedelta(seconds=45)

        await sql_ledger.complete_success(event_id, policy_id, server_id, {"cpu_cores": 8}, completed_at)

        event_update, policy_update, server_update = _executed(db_session)
        assert db_session_factory.call_count == 1
        db_session.commit.assert_awaited_once()

        assert statement_sql(event_update).startswith("UPDATE scaling_events SET status=")
        assert {event_id, "success", completed_at} <= set(compile_statement(event_update).params.values())

        policy_sql = statement_sql(policy_update)
        assert "last_triggered=" in policy_sql
        assert "trigger_count=(scaling_policies.trigger_count + " in policy_sql
        assert "claimed_at=" in policy_sql
        assert compile_statement(policy_update).params["last_triggered"] == completed_at

        assert statement_sql(server_update).startswith("UPDATE servers SET configuration=")

    async def test_manual_success_skips_policy_update(self, sql_ledger, db_session):
        await sql_ledger.complete_success(uuid4(), None, uuid4(), {"ram_mb": 4096}, T0)

        statements = _executed(db_session)
        assert len(statements) == 2
        assert not any(statement_sql(s).startswith("UPDATE scaling_policies") for s in statements)

    async def test_failure_leaves_cooldown_untouched(self, sql_ledger, db_session):
        event_id, policy_id = uuid4(), uuid4()

        await sql_ledger.complete_failure(event_id, policy_id, "x" * 5000, T0)

        event_update, policy_update = _executed(db_session)
        params = compile_statement(event_update).params
        assert params["status"] == "failed"
        assert len(params["error_message"]) == 2000

        policy_sql = statement_sql(policy_update)
        assert "claimed_at=" in policy_sql
        assert "last_triggered" not in policy_sql
        assert "trigger_count" not in policy_sql
        db_session.commit.assert_awaited_once()


class TestExpireStaleEvents:
    async def test_expires_in_progress_before_cutoff(self, sql_ledger, db_session):
        db_session.execute.return_value.rowcount = 2
        cutoff = T0 - timedelta(hours=1)

        expired = await sql_ledger.expire_stale_events(cutoff, T0)

        assert expired == 2
        [statement] = _executed(db_session)
        sql = statement_sql(statement)
        assert sql.startswith("UPDATE scaling_events SET status=")
        assert "scaling_events.status = " in sql
        assert "scaling_events.executed_at < " in sql
        params = compile_statement(statement).params
        assert params["status"] == "failed"
        assert params["error_message"] == ABANDONED_MESSAGE
        assert {"in_progress", cutoff} <= set(params.values())

    async def test_nothing_stale(self, sql_ledger, db_session):
        db_session.execute.return_value.rowcount = 0

        assert await sql_ledger.expire_stale_events(T0, T0) == 0
