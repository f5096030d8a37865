"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete infradesk schema:
- users, session_tokens: identity and bearer sessions
- projects, phases: request scope
- resource_templates: catalog with configured approval depth
- resources: phase resource pools (the ledger)
- resource_requests: one ask for N units, exactly one provenance
- approval_records: one row per (request, level)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # users / session_tokens
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('department', sa.String(length=128), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
        sa.UniqueConstraint('email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_role_active', 'users', ['role', 'is_active'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token_hash'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user', 'session_tokens', ['user_id'])

    # ============================================================================
    # projects / phases
    # ============================================================================
    op.create_table(
        'projects',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('client', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'phases',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_phases_project', 'phases', ['project_id'])

    # ============================================================================
    # resource_templates / resources (ledger)
    # ============================================================================
    op.create_table(
        'resource_templates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('approval_levels', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('approval_levels >= 0 AND approval_levels <= 3',
                           name='ck_resource_templates_approval_levels'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'resources',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('phase_id', sa.Integer(), nullable=False),
        sa.Column('resource_template_id', sa.Integer(), nullable=True),
        sa.Column('resource_type', sa.String(length=128), nullable=False),
        sa.Column('identifier', sa.String(length=128), nullable=True),
        sa.Column('configuration', sa.JSON(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('consumed_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('approval_levels', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cost_per_unit_cents', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('consumed_quantity >= 0 AND consumed_quantity <= quantity',
                           name='ck_resources_consumed_within_quantity'),
        sa.CheckConstraint('quantity >= 0', name='ck_resources_quantity_non_negative'),
        sa.CheckConstraint('approval_levels >= 0 AND approval_levels <= 3',
                           name='ck_resources_approval_levels'),
        sa.ForeignKeyConstraint(['phase_id'], ['phases.id'], ),
        sa.ForeignKeyConstraint(['resource_template_id'], ['resource_templates.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_resources_phase_type', 'resources', ['phase_id', 'resource_type'])

    # ============================================================================
    # resource_requests / approval_records
    # ============================================================================
    op.create_table(
        'resource_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('requester_id', sa.Integer(), nullable=False),
        sa.Column('phase_id', sa.Integer(), nullable=False),
        sa.Column('resource_id', sa.Integer(), nullable=True),
        sa.Column('resource_template_id', sa.Integer(), nullable=True),
        sa.Column('resource_type', sa.String(length=128), nullable=True),
        sa.Column('requested_config', sa.JSON(), nullable=False),
        sa.Column('requested_qty', sa.Integer(), nullable=False),
        sa.Column('justification', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('current_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('required_levels', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assigned_to_user_id', sa.Integer(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_by_id', sa.Integer(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completion_notes', sa.Text(), nullable=True),
        sa.Column('credentials', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint(
            "(CASE WHEN resource_id IS NOT NULL THEN 1 ELSE 0 END)"
            " + (CASE WHEN resource_template_id IS NOT NULL THEN 1 ELSE 0 END)"
            " + (CASE WHEN resource_type IS NOT NULL THEN 1 ELSE 0 END) = 1",
            name='ck_resource_requests_one_provenance'),
        sa.CheckConstraint('requested_qty > 0', name='ck_resource_requests_qty_positive'),
        sa.CheckConstraint('current_level >= 0 AND current_level <= required_levels',
                           name='ck_resource_requests_level_bounds'),
        sa.ForeignKeyConstraint(['requester_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['phase_id'], ['phases.id'], ),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ),
        sa.ForeignKeyConstraint(['resource_template_id'], ['resource_templates.id'], ),
        sa.ForeignKeyConstraint(['assigned_to_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['completed_by_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_resource_requests_phase_type_status', 'resource_requests',
                    ['phase_id', 'resource_type', 'status'])
    op.create_index('ix_resource_requests_requester', 'resource_requests', ['requester_id'])
    op.create_index('ix_resource_requests_status', 'resource_requests', ['status'])

    op.create_table(
        'approval_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('resource_request_id', sa.Integer(), nullable=False),
        sa.Column('approval_level', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('approver_id', sa.Integer(), nullable=True),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('approval_level >= 1', name='ck_approval_records_level_positive'),
        sa.ForeignKeyConstraint(['resource_request_id'], ['resource_requests.id'], ),
        sa.ForeignKeyConstraint(['approver_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        # One record per (request, level); a concurrent second insert fails here
        sa.UniqueConstraint('resource_request_id', 'approval_level',
                            name='uq_approval_records_request_level'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_approval_records_approver_status', 'approval_records',
                    ['approver_id', 'status'])


def downgrade():
    op.drop_index('ix_approval_records_approver_status', table_name='approval_records')
    op.drop_table('approval_records')
    op.drop_index('ix_resource_requests_status', table_name='resource_requests')
    op.drop_index('ix_resource_requests_requester', table_name='resource_requests')
    op.drop_index('ix_resource_requests_phase_type_status', table_name='resource_requests')
    op.drop_table('resource_requests')
    op.drop_index('ix_resources_phase_type', table_name='resources')
    op.drop_table('resources')
    op.drop_table('resource_templates')
    op.drop_index('ix_phases_project', table_name='phases')
    op.drop_table('phases')
    op.drop_table('projects')
    op.drop_index('ix_session_tokens_user', table_name='session_tokens')
    op.drop_table('session_tokens')
    op.drop_index('ix_users_role_active', table_name='users')
    op.drop_table('users')
