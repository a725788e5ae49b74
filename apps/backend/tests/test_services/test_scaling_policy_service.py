"""
Tests for scaling policy validation and configuration suggestions
"""

from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from apps.backend.src.core.exceptions import PolicyValidationError
from apps.backend.src.schemas.scaling import ScalingPolicyCreate
from apps.backend.src.schemas.server import ServerConfiguration
from apps.backend.src.services.scaling_policy_service import (
    ScalingPolicyService,
    configuration_options,
    validate_policy,
)
from conftest import T0


def _policy_data(**overrides):
    data = {
        "server_id": str(uuid4()),
        "policy_name": "cpu-up",
        "direction": "scale_up",
        "metric": "cpu",
        "threshold": 80,
        "sustained_duration": 300,
        "target_configuration": {"cpu_cores": 8, "ram_mb": 16384},
        "cooldown_period": 1800,
        "max_actions_per_day": 3,
    }
    data.update(overrides)
    return data


class TestValidatePolicy:
    def test_valid_policy(self):
        policy = validate_policy(_policy_data())

        assert isinstance(policy, ScalingPolicyCreate)
        assert policy.direction.value == "scale_up"
        assert policy.target_configuration.cpu_cores == 8

    def test_already_validated_passes_through(self):
        policy = ScalingPolicyCreate.model_validate(_policy_data())
        assert validate_policy(policy) is policy

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"direction": "sideways"}, "direction"),
            ({"metric": "gpu"}, "metric"),
            ({"threshold": 0}, "threshold"),
            ({"threshold": 120}, "threshold"),
            ({"sustained_duration": 30}, "sustained_duration"),
            ({"cooldown_period": 60}, "cooldown_period"),
            ({"max_actions_per_day": 0}, "max_actions_per_day"),
            ({"target_configuration": {}}, "target_configuration"),
            ({"notification_email": "not-an-email"}, "notification_email"),
        ],
    )
    def test_rejects_invalid_fields(self, overrides, field):
        with pytest.raises(PolicyValidationError) as exc_info:
            validate_policy(_policy_data(**overrides))

        assert exc_info.value.details["field"] == field
        assert exc_info.value.error_code == "POLICY_VALIDATION_ERROR"

    def test_network_threshold_may_exceed_100(self):
        policy = validate_policy(_policy_data(metric="network", threshold=500))
        assert policy.threshold == 500


class TestConfigurationOptions:
    def test_scale_up_doubles_with_caps(self):
        current = ServerConfiguration(product_id="V45", cpu_cores=4, ram_mb=8192, disk_mb=204800)

        scale_up, _ = configuration_options(current)

        by_name = {option.name: option.configuration for option in scale_up}
        assert by_name["CPU Upgrade"].cpu_cores == 8
        assert by_name["CPU Upgrade"].ram_mb == 8192
        assert by_name["Memory Upgrade"].ram_mb == 16384
        assert by_name["Balanced Upgrade"].cpu_cores == 8
        assert by_name["Balanced Upgrade"].ram_mb == 16384
        assert by_name["Balanced Upgrade"].product_id == "V45"

    def test_scale_up_respects_maximums(self):
        scale_up, _ = configuration_options(ServerConfiguration(cpu_cores=12, ram_mb=24576))

        balanced = scale_up[-1].configuration
        assert balanced.cpu_cores == 16
        assert balanced.ram_mb == 32768

    def test_scale_down_halves_with_floors(self):
        _, scale_down = configuration_options(ServerConfiguration(cpu_cores=1, ram_mb=1536))

        by_name = {option.name: option.configuration for option in scale_down}
        assert by_name["CPU Downgrade"].cpu_cores == 1
        assert by_name["Memory Downgrade"].ram_mb == 1024

    def test_unknown_size_uses_minimums(self):
        scale_up, scale_down = configuration_options(ServerConfiguration())

        assert scale_up[0].configuration.cpu_cores == 2
        assert scale_down[1].configuration.ram_mb == 1024


def _scalar(value):
    result = MagicMock()
    result.scalar_one.return_value = value
    return result


def _rows(rows):
    result = MagicMock()
    result.all.return_value = rows
    return result


class TestStatistics:
    async def test_aggregates(self, db_session_factory, db_session):
        db_session.execute.side_effect = [
            _scalar(4),
            _scalar(3),
            _rows([("scale_up", 3), ("scale_down", 1)]),
            _rows([("cpu", 3), ("memory", 1)]),
            _scalar(2),
            _scalar(8),
            _scalar(6),
        ]

        stats = await ScalingPolicyService(db_session_factory).get_statistics(T0)

        assert stats.total_policies == 4
        assert stats.active_policies == 3
        assert stats.scale_up_policies == 3
        assert stats.scale_down_policies == 1
        assert stats.actions_last_24h == 2
        assert stats.success_rate == 75.0
        assert stats.metric_distribution == {"cpu": 3, "memory": 1}

    async def test_no_events_means_zero_success_rate(self, db_session_factory, db_session):
        db_session.execute.side_effect = [
            _scalar(0),
            _scalar(0),
            _rows([]),
            _rows([]),
            _scalar(0),
            _scalar(0),
            _scalar(0),
        ]

        stats = await ScalingPolicyService(db_session_factory).get_statistics(T0)

        assert stats.success_rate == 0.0
        assert stats.scale_up_policies == 0
        assert stats.metric_distribution == {}
