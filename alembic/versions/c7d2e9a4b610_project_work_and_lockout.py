"""Work logs, project documents and reports, job runs, per-account lockout counters

Revision ID: c7d2e9a4b610
Revises: a1f0c3d5e7b9
Create Date: 2026-10-19T15:40:02.551930
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'c7d2e9a4b610'
down_revision: Union[str, None] = 'a1f0c3d5e7b9'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

DOCUMENT_STATUS = sa.Enum('PENDING', 'APPROVED', 'REJECTED', 'COMPLETED', 'NOT_COMPLETE', name='documentstatus')

LOCKOUT_TABLES = ('users', 'clients')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    for table in LOCKOUT_TABLES:
        with op.batch_alter_table(table) as batch:
            batch.add_column(sa.Column('otp_attempts', sa.Integer(), nullable=True, server_default='0'))
            batch.add_column(sa.Column('failed_login_attempts', sa.Integer(), nullable=True, server_default='0'))
            batch.add_column(sa.Column('locked_until', sa.DateTime(timezone=True), nullable=True))

    # --- work_logs ---
    op.create_table(
        'work_logs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('hours_worked', sa.Numeric(5, 2), nullable=False),
        sa.Column('work_date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_work_logs_user_date', 'work_logs', ['user_id', 'work_date'])
    op.create_index('idx_work_logs_project', 'work_logs', ['project_id'])

    # --- project_reports / project_documents ---
    op.create_table(
        'project_reports',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('title', sa.String(300), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('team_id', sa.String(), sa.ForeignKey('teams.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('assigned_to', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_project_reports_project', 'project_reports', ['project_id'])

    op.create_table(
        'project_documents',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(300), nullable=False),
        sa.Column('url', sa.String(1000), nullable=False),
        sa.Column('content_type', sa.String(100), nullable=True),
        sa.Column('size', sa.BigInteger(), nullable=True),
        sa.Column('status', DOCUMENT_STATUS, nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('report_id', sa.String(), sa.ForeignKey('project_reports.id', ondelete='SET NULL'), nullable=True),
        sa.Column('uploaded_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('client_id', sa.String(), sa.ForeignKey('clients.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_project_documents_project', 'project_documents', ['project_id'])
    op.create_index('idx_project_documents_report', 'project_documents', ['report_id'])

    # --- job_runs ---
    op.create_table(
        'job_runs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('job', sa.String(100), nullable=False),
        sa.Column('period', sa.String(50), nullable=False),
        sa.Column('triggered_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('job', 'period', name='uq_job_run_period'),
    )


def downgrade() -> None:
    op.drop_table('job_runs')
    op.drop_index('idx_project_documents_report', table_name='project_documents')
    op.drop_index('idx_project_documents_project', table_name='project_documents')
    op.drop_table('project_documents')
    op.drop_index('idx_project_reports_project', table_name='project_reports')
    op.drop_table('project_reports')
    op.drop_index('idx_work_logs_project', table_name='work_logs')
    op.drop_index('idx_work_logs_user_date', table_name='work_logs')
    op.drop_table('work_logs')
    DOCUMENT_STATUS.drop(op.get_bind(), checkfirst=True)

    for table in LOCKOUT_TABLES:
        with op.batch_alter_table(table) as batch:
            batch.drop_column('locked_until')
            batch.drop_column('failed_login_attempts')
            batch.drop_column('otp_attempts')
