"""
Unit tests for the alert engine
"""

from uuid import uuid4

import pytest

from apps.backend.src.core.exceptions import MetricUnavailableError
from apps.backend.src.services.alert_engine import AlertEngine, condition_met, extract_alert_value
from conftest import T0, FakeNotifier, make_alert, make_snapshot


@pytest.fixture
def engine(alert_store, notifier, clock):
    return AlertEngine(alert_store, notifier, clock)


@pytest.fixture
def server_ids():
    return [uuid4(), uuid4()]


class TestConditionMet:
    def test_greater_than_is_strict(self):
        assert condition_met(90.1, "greater_than", 90.0)
        assert not condition_met(90.0, "greater_than", 90.0)

    def test_less_than_is_strict(self):
        assert condition_met(9.9, "less_than", 10.0)
        assert not condition_met(10.0, "less_than", 10.0)

    def test_equals_uses_tolerance(self):
        assert condition_met(50.05, "equals", 50.0)
        assert condition_met(49.95, "equals", 50.0)
        assert not condition_met(50.1, "equals", 50.0)
        assert not condition_met(49.85, "equals", 50.0)

    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            condition_met(1.0, "between", 1.0)


class TestExtractAlertValue:
    def test_uptime_is_reported_in_hours(self):
        snapshot = make_snapshot(uuid4(), T0, uptime_seconds=5400)
        assert extract_alert_value(snapshot, "uptime") == pytest.approx(1.5)

    def test_missing_value_raises(self):
        snapshot = make_snapshot(uuid4(), T0, cpu_usage_percent=None)
        with pytest.raises(MetricUnavailableError):
            extract_alert_value(snapshot, "cpu")

    def test_load_and_response_time(self):
        snapshot = make_snapshot(uuid4(), T0, load_average_1m=2.5, response_time_ms=42.0)
        assert extract_alert_value(snapshot, "load") == 2.5
        assert extract_alert_value(snapshot, "response_time") == 42.0


class TestAlertEngine:
    async def test_global_definition_checks_every_server(self, engine, alert_store, server_ids):
        definition = make_alert(threshold=90.0)
        snapshots = {
            server_ids[0]: make_snapshot(server_ids[0], T0, cpu_usage_percent=95.0),
            server_ids[1]: make_snapshot(server_ids[1], T0, cpu_usage_percent=50.0),
        }

        stats = await engine.evaluate([definition], snapshots)

        assert stats.evaluated == 2
        assert stats.triggered == 1
        assert stats.errors == 0
        assert [e.server_id for e in alert_store.events] == [server_ids[0]]

    async def test_scoped_definition_checks_only_its_server(self, engine, alert_store, server_ids):
        definition = make_alert(server_id=server_ids[1], threshold=90.0)
        snapshots = {sid: make_snapshot(sid, T0, cpu_usage_percent=99.0) for sid in server_ids}

        stats = await engine.evaluate([definition], snapshots)

        assert stats.evaluated == 1
        assert stats.triggered == 1
        assert alert_store.events[0].server_id == server_ids[1]

    async def test_scoped_definition_without_snapshot_is_skipped(self, engine, server_ids):
        definition = make_alert(server_id=uuid4())
        snapshots = {server_ids[0]: make_snapshot(server_ids[0], T0, cpu_usage_percent=99.0)}

        stats = await engine.evaluate([definition], snapshots)

        assert stats.evaluated == 0
        assert stats.triggered == 0

    async def test_offline_snapshots_are_skipped(self, engine, alert_store, server_ids):
        definition = make_alert(metric="uptime", operator="less_than", threshold=1.0)
        snapshots = {server_ids[0]: make_snapshot(server_ids[0], T0, is_online=False)}

        stats = await engine.evaluate([definition], snapshots)

        assert stats.evaluated == 0
        assert alert_store.events == []

    async def test_event_and_message(self, engine, alert_store, server_ids, clock):
        definition = make_alert(name="High CPU", threshold=90.0)
        alert_store.definitions.append(definition)
        snapshots = {server_ids[0]: make_snapshot(server_ids[0], T0, cpu_usage_percent=95.0)}

        await engine.evaluate([definition], snapshots)

        event = alert_store.events[0]
        assert event.alert_id == definition.id
        assert event.metric == "cpu"
        assert event.metric_value == 95.0
        assert event.threshold_value == 90.0
        assert event.triggered_at == clock.now()
        assert event.message == "Alert triggered: High CPU is 95%, threshold is 90%"
        assert definition.trigger_count == 1

    async def test_message_rounds_value(self, engine, alert_store, server_ids):
        definition = make_alert(name="Slow", metric="response_time", threshold=250.0)
        snapshots = {server_ids[0]: make_snapshot(server_ids[0], T0, response_time_ms=312.456)}

        await engine.evaluate([definition], snapshots)

        assert alert_store.events[0].message == "Alert triggered: Slow is 312.46ms, threshold is 250ms"

    async def test_fires_again_on_next_evaluation(self, engine, alert_store, server_ids):
        definition = make_alert(threshold=90.0)
        snapshots = {server_ids[0]: make_snapshot(server_ids[0], T0, cpu_usage_percent=95.0)}

        await engine.evaluate([definition], snapshots)
        await engine.evaluate([definition], snapshots)

        assert len(alert_store.events) == 2

    async def test_notifies_with_server_name(self, engine, notifier, server_ids):
        definition = make_alert(name="High CPU", threshold=90.0)
        snapshots = {server_ids[0]: make_snapshot(server_ids[0], T0, cpu_usage_percent=95.0)}

        await engine.evaluate([definition], snapshots, {server_ids[0]: "web-1"})

        assert notifier.sent == [
            {
                "recipient": "ops@example.com",
                "subject": "[Alert] High CPU on web-1",
                "body": "Alert triggered: High CPU is 95%, threshold is 90%",
                "priority": 8,
            }
        ]

    async def test_no_recipient_no_notification(self, engine, notifier, alert_store, server_ids):
        definition = make_alert(notification_email=None, threshold=90.0)
        snapshots = {server_ids[0]: make_snapshot(server_ids[0], T0, cpu_usage_percent=95.0)}

        stats = await engine.evaluate([definition], snapshots)

        assert stats.triggered == 1
        assert notifier.sent == []

    async def test_notification_failure_still_counts_firing(self, alert_store, clock, server_ids):
        engine = AlertEngine(alert_store, FakeNotifier(fail=True), clock)
        definition = make_alert(threshold=90.0)
        snapshots = {server_ids[0]: make_snapshot(server_ids[0], T0, cpu_usage_percent=95.0)}

        stats = await engine.evaluate([definition], snapshots)

        assert stats.triggered == 1
        assert stats.errors == 0
        assert len(alert_store.events) == 1

    async def test_failing_definition_does_not_stop_others(self, engine, alert_store, server_ids):
        missing_metric = make_alert(name="Load", metric="load", threshold=4.0)
        cpu = make_alert(name="CPU", threshold=90.0)
        snapshots = {server_ids[0]: make_snapshot(server_ids[0], T0, cpu_usage_percent=95.0)}

        stats = await engine.evaluate([missing_metric, cpu], snapshots)

        assert stats.evaluated == 2
        assert stats.errors == 1
        assert stats.triggered == 1
        assert alert_store.events[0].alert_id == cpu.id

    async def test_store_failure_is_counted(self, engine, alert_store, server_ids):
        async def broken_record(event):
            raise RuntimeError("insert failed")

        alert_store.record_firing = broken_record
        definition = make_alert(threshold=90.0)
        snapshots = {server_ids[0]: make_snapshot(server_ids[0], T0, cpu_usage_percent=95.0)}

        stats = await engine.evaluate([definition], snapshots)

        assert stats.errors == 1
        assert stats.triggered == 0
