"""Baseline: users, subscriptions and workflow checkpoint tables

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ACTIVE_RUN_CONDITION = sa.text("status IN ('pending', 'sleeping', 'running')")


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create subscription and workflow tables."""

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),

        # Subscription details
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('frequency', sa.String(20), nullable=False, server_default='monthly'),
        sa.Column('category', sa.String(30), nullable=False, server_default='other'),
        sa.Column('payment_method', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),

        # Billing dates
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('renewal_date', sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_renewal_date', 'subscriptions', ['renewal_date'])

    op.create_table(
        'workflow_runs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('workflow', sa.String(100), nullable=False),
        sa.Column('workflow_key', sa.String(255), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('wake_at', sa.DateTime(timezone=True)),
        sa.Column('lease_expires_at', sa.DateTime(timezone=True)),
        sa.Column('cancel_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('executions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('result', sa.JSON()),
        sa.Column('error', sa.String()),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index('ix_workflow_runs_workflow', 'workflow_runs', ['workflow'])
    op.create_index('ix_workflow_runs_workflow_key', 'workflow_runs', ['workflow_key'])
    op.create_index('ix_workflow_runs_status', 'workflow_runs', ['status'])
    op.create_index('ix_workflow_runs_wake_at', 'workflow_runs', ['wake_at'])

    # At most one active run per workflow key
    op.create_index(
        'uq_workflow_runs_active_key',
        'workflow_runs',
        ['workflow', 'workflow_key'],
        unique=True,
        postgresql_where=ACTIVE_RUN_CONDITION,
        sqlite_where=ACTIVE_RUN_CONDITION,
    )

    op.create_table(
        'workflow_steps',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('run_id', sa.Uuid(), sa.ForeignKey('workflow_runs.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('output', sa.JSON()),
        sa.Column('error', sa.String()),
        sa.Column('error_type', sa.String(100)),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.UniqueConstraint('run_id', 'name', name='uq_workflow_steps_run_name'),
    )
    op.create_index('ix_workflow_steps_run_id', 'workflow_steps', ['run_id'])


def downgrade() -> None:
    """Drop all baseline tables."""
    op.drop_index('ix_workflow_steps_run_id', table_name='workflow_steps')
    op.drop_table('workflow_steps')
    op.drop_index('uq_workflow_runs_active_key', table_name='workflow_runs')
    op.drop_index('ix_workflow_runs_wake_at', table_name='workflow_runs')
    op.drop_index('ix_workflow_runs_status', table_name='workflow_runs')
    op.drop_index('ix_workflow_runs_workflow_key', table_name='workflow_runs')
    op.drop_index('ix_workflow_runs_workflow', table_name='workflow_runs')
    op.drop_table('workflow_runs')
    op.drop_index('ix_subscriptions_renewal_date', table_name='subscriptions')
    op.drop_index('ix_subscriptions_status', table_name='subscriptions')
    op.drop_index('ix_subscriptions_user_id', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
