"""Create server registry, telemetry, alerting and scaling tables

Revision ID: 3c9e1f7a2b64
Revises:
Create Date: 2026-10-19 09:12:44.318205

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3c9e1f7a2b64'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Server registry
    op.create_table('servers',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('provider_instance_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='unknown'),
        sa.Column('configuration', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('monitoring_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_seen', sa.DateTime(timezone=True), nullable=True),
        sa.Column('glances_port', sa.Integer(), nullable=False, server_default='61208'),
        sa.Column('glances_url', sa.String(length=512), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_servers')),
        sa.UniqueConstraint('provider_instance_id', name=op.f('uq_servers_provider_instance_id')),
    )
    op.create_index(op.f('ix_servers_provider_instance_id'), 'servers', ['provider_instance_id'], unique=False)
    op.create_index(op.f('ix_servers_status'), 'servers', ['status'], unique=False)
    op.create_index(op.f('ix_servers_monitoring_enabled'), 'servers', ['monitoring_enabled'], unique=False)

    # Telemetry snapshots, keyed by (time, server_id)
    op.create_table('metric_snapshots',
        sa.Column('time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('server_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('cpu_usage_percent', sa.Float(), nullable=True),
        sa.Column('load_average_1m', sa.Float(), nullable=True),
        sa.Column('memory_total_bytes', sa.BigInteger(), nullable=True),
        sa.Column('memory_used_bytes', sa.BigInteger(), nullable=True),
        sa.Column('memory_usage_percent', sa.Float(), nullable=True),
        sa.Column('disk_total_bytes', sa.BigInteger(), nullable=True),
        sa.Column('disk_used_bytes', sa.BigInteger(), nullable=True),
        sa.Column('disk_usage_percent', sa.Float(), nullable=True),
        sa.Column('network_bytes_in', sa.BigInteger(), nullable=True),
        sa.Column('network_bytes_out', sa.BigInteger(), nullable=True),
        sa.Column('uptime_seconds', sa.BigInteger(), nullable=True),
        sa.Column('response_time_ms', sa.Float(), nullable=True),
        sa.Column('is_online', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.ForeignKeyConstraint(['server_id'], ['servers.id'], name=op.f('fk_metric_snapshots_server_id_servers'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('time', 'server_id', name=op.f('pk_metric_snapshots')),
    )
    op.create_index('ix_metric_snapshots_server_time', 'metric_snapshots', ['server_id', 'time'], unique=False)

    # Alerting
    op.create_table('alert_definitions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('server_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('metric', sa.String(length=32), nullable=False),
        sa.Column('operator', sa.String(length=32), nullable=False),
        sa.Column('threshold', sa.Float(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('notification_email', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_triggered', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trigger_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.CheckConstraint("metric IN ('cpu', 'memory', 'disk', 'load', 'response_time', 'uptime')", name=op.f('ck_alert_definitions_check_alert_metric')),
        sa.CheckConstraint("operator IN ('greater_than', 'less_than', 'equals')", name=op.f('ck_alert_definitions_check_alert_operator')),
        sa.ForeignKeyConstraint(['server_id'], ['servers.id'], name=op.f('fk_alert_definitions_server_id_servers'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_alert_definitions')),
    )
    op.create_index(op.f('ix_alert_definitions_server_id'), 'alert_definitions', ['server_id'], unique=False)
    op.create_index(op.f('ix_alert_definitions_is_active'), 'alert_definitions', ['is_active'], unique=False)

    op.create_table('alert_events',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('alert_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('server_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('metric', sa.String(length=32), nullable=False),
        sa.Column('metric_value', sa.Float(), nullable=False),
        sa.Column('threshold_value', sa.Float(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('triggered_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['alert_id'], ['alert_definitions.id'], name=op.f('fk_alert_events_alert_id_alert_definitions'), ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['server_id'], ['servers.id'], name=op.f('fk_alert_events_server_id_servers'), ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_alert_events')),
    )
    op.create_index('idx_alert_events_alert_time', 'alert_events', ['alert_id', 'triggered_at'], unique=False)
    op.create_index('idx_alert_events_server_time', 'alert_events', ['server_id', 'triggered_at'], unique=False)

    # Scaling policies and the scaling audit log
    op.create_table('scaling_policies',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('server_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('policy_name', sa.String(length=255), nullable=False),
        sa.Column('direction', sa.String(length=16), nullable=False),
        sa.Column('metric', sa.String(length=16), nullable=False),
        sa.Column('threshold', sa.Float(), nullable=False),
        sa.Column('sustained_duration', sa.Integer(), nullable=False, server_default='300'),
        sa.Column('target_configuration', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('cooldown_period', sa.Integer(), nullable=False, server_default='1800'),
        sa.Column('max_actions_per_day', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('notification_email', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_triggered', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trigger_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.CheckConstraint("direction IN ('scale_up', 'scale_down')", name=op.f('ck_scaling_policies_check_policy_direction')),
        sa.CheckConstraint("metric IN ('cpu', 'memory', 'disk', 'network')", name=op.f('ck_scaling_policies_check_policy_metric')),
        sa.CheckConstraint('threshold > 0', name=op.f('ck_scaling_policies_check_policy_threshold')),
        sa.CheckConstraint('sustained_duration >= 60', name=op.f('ck_scaling_policies_check_policy_sustained_duration')),
        sa.CheckConstraint('cooldown_period >= 300', name=op.f('ck_scaling_policies_check_policy_cooldown')),
        sa.CheckConstraint('max_actions_per_day >= 1', name=op.f('ck_scaling_policies_check_policy_max_actions')),
        sa.ForeignKeyConstraint(['server_id'], ['servers.id'], name=op.f('fk_scaling_policies_server_id_servers'), ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_scaling_policies')),
    )
    op.create_index(op.f('ix_scaling_policies_server_id'), 'scaling_policies', ['server_id'], unique=False)
    op.create_index(op.f('ix_scaling_policies_is_active'), 'scaling_policies', ['is_active'], unique=False)

    op.create_table('scaling_events',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('policy_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('server_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('action_type', sa.String(length=16), nullable=False),
        sa.Column('metric_value', sa.Float(), nullable=True),
        sa.Column('threshold_value', sa.Float(), nullable=True),
        sa.Column('old_configuration', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('new_configuration', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='in_progress'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('triggered_by', sa.String(length=100), nullable=True),
        sa.Column('executed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("action_type IN ('scale_up', 'scale_down', 'manual')", name=op.f('ck_scaling_events_check_event_action_type')),
        sa.CheckConstraint("status IN ('success', 'failed', 'in_progress')", name=op.f('ck_scaling_events_check_event_status')),
        sa.ForeignKeyConstraint(['policy_id'], ['scaling_policies.id'], name=op.f('fk_scaling_events_policy_id_scaling_policies'), ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['server_id'], ['servers.id'], name=op.f('fk_scaling_events_server_id_servers'), ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_scaling_events')),
    )
    op.create_index('idx_scaling_events_policy_time', 'scaling_events', ['policy_id', 'executed_at'], unique=False)
    op.create_index('idx_scaling_events_server_time', 'scaling_events', ['server_id', 'executed_at'], unique=False)
    op.create_index('idx_scaling_events_status', 'scaling_events', ['status'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('idx_scaling_events_status', table_name='scaling_events')
    op.drop_index('idx_scaling_events_server_time', table_name='scaling_events')
    op.drop_index('idx_scaling_events_policy_time', table_name='scaling_events')
    op.drop_table('scaling_events')

    op.drop_index(op.f('ix_scaling_policies_is_active'), table_name='scaling_policies')
    op.drop_index(op.f('ix_scaling_policies_server_id'), table_name='scaling_policies')
    op.drop_table('scaling_policies')

    op.drop_index('idx_alert_events_server_time', table_name='alert_events')
    op.drop_index('idx_alert_events_alert_time', table_name='alert_events')
    op.drop_table('alert_events')

    op.drop_index(op.f('ix_alert_definitions_is_active'), table_name='alert_definitions')
    op.drop_index(op.f('ix_alert_definitions_server_id'), table_name='alert_definitions')
    op.drop_table('alert_definitions')

    op.drop_index('ix_metric_snapshots_server_time', table_name='metric_snapshots')
    op.drop_table('metric_snapshots')

    op.drop_index(op.f('ix_servers_monitoring_enabled'), table_name='servers')
    op.drop_index(op.f('ix_servers_status'), table_name='servers')
    op.drop_index(op.f('ix_servers_provider_instance_id'), table_name='servers')
    op.drop_table('servers')
