"""Create retention_task_log table

Revision ID: 001
Revises:
Create Date: 2026-10-17 10:00:00.000000

Backup tables are not created here: their names come from the retention
configuration and they are created on service start-up by
models.backup_record.ensure_backup_tables().
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # gen_random_uuid() is used for backup ids in generated backup statements
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        'retention_task_log',
        sa.Column('task_id', sa.Text(), nullable=False),
        sa.Column('task_type', sa.Text(), nullable=False),
        sa.Column('initiator', sa.Text(), nullable=False),
        sa.Column('entities', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column('started_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('status', sa.Text(), server_default=sa.text("'STARTED'"), nullable=False),
        sa.Column('dry_run', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('candidates_count', sa.Integer(), nullable=True),
        sa.Column('deleted_count', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('task_id'),
        sa.CheckConstraint(
            "task_type IN ('ANALYSIS', 'CLEANUP', 'DISTRIBUTED_CLEANUP', 'REINSTATE', 'BACKUP_PURGE')",
            name='ck_retention_task_log_task_type'
        ),
        sa.CheckConstraint(
            "status IN ('STARTED', 'COMPLETED', 'FAILED')",
            name='ck_retention_task_log_status'
        ),
    )

    # Recent-first task history listing
    op.create_index('ix_retention_task_log_started_at', 'retention_task_log', ['started_at'])


def downgrade():
    op.drop_index('ix_retention_task_log_started_at', table_name='retention_task_log')
    op.drop_table('retention_task_log')
