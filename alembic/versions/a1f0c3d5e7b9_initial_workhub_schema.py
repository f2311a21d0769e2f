"""Initial WorkHub schema (identity, projects, leave, proposals, HSE, finance, audit, outbox)

Revision ID: a1f0c3d5e7b9
Revises:
Create Date: 2026-10-19T09:12:44.318207
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1f0c3d5e7b9'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names
USER_ROLE = sa.Enum('ADMIN', 'MANAGER', 'STAFF', name='userrole')
APPROVAL_STATUS = sa.Enum('PENDING', 'APPROVED', 'REJECTED', name='approvalstatus')
PROJECT_STATUS = sa.Enum('TODO', 'IN_PROGRESS', 'REVIEW', 'DONE', name='projectstatus')
TASK_STATUS = sa.Enum('TODO', 'IN_PROGRESS', 'REVIEW', 'DONE', name='taskstatus')
TASK_PRIORITY = sa.Enum('LOW', 'MEDIUM', 'HIGH', name='taskpriority')
LEAVE_STATUS = sa.Enum('PENDING', 'APPROVED', 'REJECTED', name='leavestatus')
PROPOSAL_STATUS = sa.Enum('DRAFT', 'SUBMITTED', 'APPROVED', 'REJECTED', 'WON', 'LOST', name='proposalstatus')
HSE_REPORT_STATUS = sa.Enum('OPEN', 'PENDING', 'CLOSED', name='hsereportstatus')
EXPENSE_STATUS = sa.Enum('PENDING', 'APPROVED', 'REJECTED', name='expensestatus')
EXPENSE_CATEGORY = sa.Enum(
    'OPERATIONS', 'IT_INFRASTRUCTURE', 'MARKETING', 'HUMAN_RESOURCES', 'TRAVEL',
    'OFFICE_SUPPLIES', 'PROFESSIONAL_SERVICES', 'UTILITIES', name='expensecategory',
)
AUDIT_ACTION = sa.Enum('CREATE', 'UPDATE', 'DELETE', 'LOGIN', 'LOGOUT', name='auditaction')
OUTBOX_STATUS = sa.Enum('PENDING', 'SENT', 'FAILED', name='outboxstatus')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    # --- roles ---
    op.create_table(
        'roles',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('permissions', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    # --- users ---
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('phone_number', sa.String(50), nullable=True),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('role', USER_ROLE, nullable=False),
        sa.Column('role_id', sa.String(), sa.ForeignKey('roles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('image_url', sa.String(1000), nullable=True),
        sa.Column('email_verified', sa.Boolean(), nullable=True),
        sa.Column('otp_hash', sa.String(255), nullable=True),
        sa.Column('otp_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('phone_number'),
    )
    op.create_index('idx_users_role', 'users', ['role'])

    # --- clients ---
    op.create_table(
        'clients',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('phone_number', sa.String(50), nullable=True),
        sa.Column('company', sa.String(255), nullable=True),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('image_url', sa.String(1000), nullable=True),
        sa.Column('documents', sa.JSON(), nullable=True),
        sa.Column('approval_status', APPROVAL_STATUS, nullable=False),
        sa.Column('approval_note', sa.Text(), nullable=True),
        sa.Column('email_verified', sa.Boolean(), nullable=True),
        sa.Column('otp_hash', sa.String(255), nullable=True),
        sa.Column('otp_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('phone_number'),
    )
    op.create_index('idx_clients_approval', 'clients', ['approval_status'])

    # --- teams ---
    op.create_table(
        'teams',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    # --- projects ---
    op.create_table(
        'projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_name', sa.String(300), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('budget', sa.Numeric(15, 2), nullable=True),
        sa.Column('status', PROJECT_STATUS, nullable=False),
        sa.Column('created_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_projects_status', 'projects', ['status'])

    # --- user_teams ---
    op.create_table(
        'user_teams',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('team_id', sa.String(), sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='SET NULL'), nullable=True),
        sa.Column('role', sa.String(100), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'team_id', name='uq_user_team'),
    )
    op.create_index('idx_user_teams_project', 'user_teams', ['project_id'])

    # --- team_projects / client_projects ---
    op.create_table(
        'team_projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('team_id', sa.String(), sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('team_id', 'project_id', name='uq_team_project'),
    )
    op.create_table(
        'client_projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('client_id', sa.String(), sa.ForeignKey('clients.id', ondelete='CASCADE'), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'project_id', name='uq_client_project'),
    )

    # --- tasks ---
    op.create_table(
        'tasks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('title', sa.String(300), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('assigned_to', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', TASK_STATUS, nullable=False),
        sa.Column('priority', TASK_PRIORITY, nullable=True),
        sa.Column('due_date', sa.Date(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_tasks_project', 'tasks', ['project_id'])
    op.create_index('idx_tasks_assignee', 'tasks', ['assigned_to'])

    # --- leaves ---
    op.create_table(
        'leaves',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('leave_type', sa.String(50), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('status', LEAVE_STATUS, nullable=False),
        sa.Column('decided_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_leaves_user_status', 'leaves', ['user_id', 'status'])

    # --- proposals ---
    op.create_table(
        'proposals',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('proposal_id', sa.String(20), nullable=False),
        sa.Column('title', sa.String(300), nullable=False),
        sa.Column('client_name', sa.String(300), nullable=False),
        sa.Column('value', sa.Numeric(15, 2), nullable=True),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', PROPOSAL_STATUS, nullable=False),
        sa.Column('submitted_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('approved_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('valid_until', sa.Date(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('proposal_id'),
    )
    op.create_index('idx_proposals_status', 'proposals', ['status'])

    # --- finance_expenses ---
    op.create_table(
        'finance_expenses',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('request_id', sa.String(20), nullable=False),
        sa.Column('vendor', sa.String(300), nullable=False),
        sa.Column('amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('category', EXPENSE_CATEGORY, nullable=False),
        sa.Column('expense_date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', EXPENSE_STATUS, nullable=False),
        sa.Column('submitted_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('approved_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('request_id'),
    )
    op.create_index('idx_expenses_status', 'finance_expenses', ['status'])

    # --- hse_reports / hse_documents ---
    op.create_table(
        'hse_reports',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('title', sa.String(300), nullable=False),
        sa.Column('date_of_report', sa.Date(), nullable=False),
        sa.Column('time_of_report', sa.String(8), nullable=False),
        sa.Column('reporter_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('report', sa.Text(), nullable=False),
        sa.Column('status', HSE_REPORT_STATUS, nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_hse_reports_status', 'hse_reports', ['status'])

    op.create_table(
        'hse_documents',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(300), nullable=False),
        sa.Column('urls', sa.JSON(), nullable=True),
        sa.Column('doc_type', sa.String(100), nullable=True),
        sa.Column('content_type', sa.String(100), nullable=True),
        sa.Column('size', sa.BigInteger(), nullable=True),
        sa.Column('uploaded_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('report_id', sa.String(), sa.ForeignKey('hse_reports.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_hse_documents_report', 'hse_documents', ['report_id'])

    # --- audits ---
    op.create_table(
        'audits',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('actor_type', sa.String(20), nullable=True),
        sa.Column('actor_id', sa.String(), nullable=True),
        sa.Column('action', AUDIT_ACTION, nullable=False),
        sa.Column('model', sa.String(100), nullable=False),
        sa.Column('record_id', sa.String(), nullable=True),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('request_id', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_audits_model_created', 'audits', ['model', 'created_at'])
    op.create_index('idx_audits_user', 'audits', ['user_id'])

    # --- outbox_messages ---
    op.create_table(
        'outbox_messages',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('recipient', sa.String(255), nullable=False),
        sa.Column('subject', sa.String(500), nullable=False),
        sa.Column('html', sa.Text(), nullable=False),
        sa.Column('status', OUTBOX_STATUS, nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_outbox_due', 'outbox_messages', ['status', 'next_attempt_at'])


def downgrade() -> None:
    op.drop_index('idx_outbox_due', table_name='outbox_messages')
    op.drop_table('outbox_messages')
    op.drop_index('idx_audits_user', table_name='audits')
    op.drop_index('idx_audits_model_created', table_name='audits')
    op.drop_table('audits')
    op.drop_index('idx_hse_documents_report', table_name='hse_documents')
    op.drop_table('hse_documents')
    op.drop_index('idx_hse_reports_status', table_name='hse_reports')
    op.drop_table('hse_reports')
    op.drop_index('idx_expenses_status', table_name='finance_expenses')
    op.drop_table('finance_expenses')
    op.drop_index('idx_proposals_status', table_name='proposals')
    op.drop_table('proposals')
    op.drop_index('idx_leaves_user_status', table_name='leaves')
    op.drop_table('leaves')
    op.drop_index('idx_tasks_assignee', table_name='tasks')
    op.drop_index('idx_tasks_project', table_name='tasks')
    op.drop_table('tasks')
    op.drop_table('client_projects')
    op.drop_table('team_projects')
    op.drop_index('idx_user_teams_project', table_name='user_teams')
    op.drop_table('user_teams')
    op.drop_index('idx_projects_status', table_name='projects')
    op.drop_table('projects')
    op.drop_table('teams')
    op.drop_index('idx_clients_approval', table_name='clients')
    op.drop_table('clients')
    op.drop_index('idx_users_role', table_name='users')
    op.drop_table('users')
    op.drop_table('roles')

    bind = op.get_bind()
    for enum in (
        OUTBOX_STATUS, AUDIT_ACTION, EXPENSE_CATEGORY, EXPENSE_STATUS, HSE_REPORT_STATUS,
        PROPOSAL_STATUS, LEAVE_STATUS, TASK_PRIORITY, TASK_STATUS, PROJECT_STATUS,
        APPROVAL_STATUS, USER_ROLE,
    ):
        enum.drop(bind, checkfirst=True)
