"""security policy tables

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Policies: one JSON record per policy id, rules and exemptions inline
    op.create_table(
        'security_policies',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
        sa.Column('record', sa.JSON, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_security_policies_category', 'security_policies', ['category'])

    # Deployment gates keyed by (repository_id, commit_sha)
    op.create_table(
        'deployment_gates',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('repository_id', sa.String(255), nullable=False),
        sa.Column('commit_sha', sa.String(255), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('record', sa.JSON, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('repository_id', 'commit_sha', name='uq_gate_repo_commit'),
    )
    op.create_index('ix_deployment_gates_status', 'deployment_gates', ['status'])
    op.create_index('idx_gates_repository_created', 'deployment_gates', ['repository_id', 'created_at'])

    # Insert-only audit trail
    op.create_table(
        'policy_audit_events',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('repository_id', sa.String(255), nullable=False),
        sa.Column('commit_sha', sa.String(255), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('actor', sa.String(255), nullable=True),
        sa.Column('result', sa.String(50), nullable=False),
        sa.Column('reason', sa.Text, nullable=True),
        sa.Column('extra_data', sa.JSON, nullable=True),
    )
    op.create_index('idx_audit_repository_timestamp', 'policy_audit_events', ['repository_id', 'timestamp'])


def downgrade() -> None:
    op.drop_index('idx_audit_repository_timestamp', table_name='policy_audit_events')
    op.drop_table('policy_audit_events')
    op.drop_index('idx_gates_repository_created', table_name='deployment_gates')
    op.drop_index('ix_deployment_gates_status', table_name='deployment_gates')
    op.drop_table('deployment_gates')
    op.drop_index('ix_security_policies_category', table_name='security_policies')
    op.drop_table('security_policies')
