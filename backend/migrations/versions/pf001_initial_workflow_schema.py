"""initial workflow schema

Revision ID: pf001
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the complete PharmaFlow schema:
- users, roles, permissions and their link tables, session tokens
- security_events: append-only log of authorization denials
- workflow_stages / workflow_transitions: the configurable stage graph
- stage_permissions: per-user, per-stage permission grants (versioned)
- workflow_history: append-only per-entity transition log
- purchase orders, invoice receivings, QC and warehouse approval records
- audit_logs and notifications written after committed transitions
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'pf001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def _workflow_entity_columns():
    """Stage pointer, status and optimistic version shared by workflow entities."""
    return [
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('current_stage_id', sa.Integer(), sa.ForeignKey('workflow_stages.id'), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
    ]


def _index_entity(table):
    op.create_index(f'ix_{table}_status', table, ['status'])
    op.create_index(f'ix_{table}_current_stage_id', table, ['current_stage_id'])
    op.create_index(f'ix_{table}_created_by_user_id', table, ['created_by_user_id'])
    op.create_index(f'ix_{table}_created_at', table, ['created_at'])


def upgrade():
    # ============================================================================
    # Identity and access
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=128), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    op.create_table(
        'permissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('resource', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_permissions_name', 'permissions', ['name'], unique=True)
    op.create_index('ix_permissions_resource', 'permissions', ['resource'])
    op.create_index('ix_permissions_category', 'permissions', ['category'])

    op.create_table(
        'user_roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('role_id', sa.Integer(), sa.ForeignKey('roles.id'), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'role_id', name='uq_user_roles'),
    )
    op.create_index('ix_user_roles_user_id', 'user_roles', ['user_id'])
    op.create_index('ix_user_roles_role_id', 'user_roles', ['role_id'])

    op.create_table(
        'role_permissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), sa.ForeignKey('roles.id'), nullable=False),
        sa.Column('permission_id', sa.Integer(), sa.ForeignKey('permissions.id'), nullable=False),
        sa.Column('granted_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('role_id', 'permission_id', name='uq_role_permissions'),
    )
    op.create_index('ix_role_permissions_role_id', 'role_permissions', ['role_id'])
    op.create_index('ix_role_permissions_permission_id', 'role_permissions', ['permission_id'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_expires_at', 'session_tokens', ['expires_at'])
    op.create_index('ix_session_tokens_is_revoked', 'session_tokens', ['is_revoked'])
    op.create_index('ix_session_tokens_user_active', 'session_tokens', ['user_id', 'is_revoked'])

    op.create_table(
        'security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('resource', sa.String(length=128), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_security_events_user_id', 'security_events', ['user_id'])
    op.create_index('ix_security_events_event_type', 'security_events', ['event_type'])
    op.create_index('ix_security_events_success', 'security_events', ['success'])
    op.create_index('ix_security_events_occurred', 'security_events', ['occurred_at'])
    op.create_index('ix_security_events_user_type', 'security_events', ['user_id', 'event_type'])

    # ============================================================================
    # Workflow configuration
    # ============================================================================
    op.create_table(
        'workflow_stages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('allowed_actions', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('updated_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_workflow_stages_code', 'workflow_stages', ['code'], unique=True)
    op.create_index('ix_workflow_stages_is_active', 'workflow_stages', ['is_active'])
    op.create_index('ix_workflow_stages_sequence', 'workflow_stages', ['sequence'])

    op.create_table(
        'workflow_stage_required_permissions',
        sa.Column('stage_id', sa.Integer(), sa.ForeignKey('workflow_stages.id'), nullable=False),
        sa.Column('permission_id', sa.Integer(), sa.ForeignKey('permissions.id'), nullable=False),
        sa.PrimaryKeyConstraint('stage_id', 'permission_id'),
    )

    op.create_table(
        'workflow_stage_next_stages',
        sa.Column('stage_id', sa.Integer(), sa.ForeignKey('workflow_stages.id'), nullable=False),
        sa.Column('next_stage_id', sa.Integer(), sa.ForeignKey('workflow_stages.id'), nullable=False),
        sa.PrimaryKeyConstraint('stage_id', 'next_stage_id'),
    )

    op.create_table(
        'workflow_transitions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('from_stage_id', sa.Integer(), sa.ForeignKey('workflow_stages.id'), nullable=False),
        sa.Column('to_stage_id', sa.Integer(), sa.ForeignKey('workflow_stages.id'), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('conditions', sa.JSON(), nullable=True),
        sa.Column('auto_transition', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('required_fields', sa.JSON(), nullable=False),
        sa.Column('notification_template', sa.String(length=64), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_workflow_transitions_from_stage_id', 'workflow_transitions', ['from_stage_id'])
    op.create_index('ix_workflow_transitions_to_stage_id', 'workflow_transitions', ['to_stage_id'])
    op.create_index('ix_workflow_transitions_from_action', 'workflow_transitions', ['from_stage_id', 'action'])

    op.create_table(
        'stage_permissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('stage_id', sa.Integer(), sa.ForeignKey('workflow_stages.id'), nullable=False),
        sa.Column('expiry_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assigned_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'stage_id', name='uq_stage_permissions_user_stage'),
    )
    op.create_index('ix_stage_permissions_user_id', 'stage_permissions', ['user_id'])
    op.create_index('ix_stage_permissions_stage_id', 'stage_permissions', ['stage_id'])
    op.create_index('ix_stage_permissions_stage_active', 'stage_permissions', ['stage_id', 'is_active'])

    op.create_table(
        'stage_permission_grants',
        sa.Column('stage_permission_id', sa.Integer(), sa.ForeignKey('stage_permissions.id'), nullable=False),
        sa.Column('permission_id', sa.Integer(), sa.ForeignKey('permissions.id'), nullable=False),
        sa.PrimaryKeyConstraint('stage_permission_id', 'permission_id'),
    )

    op.create_table(
        'workflow_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('from_stage_id', sa.Integer(), sa.ForeignKey('workflow_stages.id'), nullable=True),
        sa.Column('stage_id', sa.Integer(), sa.ForeignKey('workflow_stages.id'), nullable=False),
        sa.Column('transition_id', sa.Integer(),
                  sa.ForeignKey('workflow_transitions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('action_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('action_date', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column('changes', sa.JSON(), nullable=False),
        sa.Column('is_auto', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('entity_type', 'entity_id', 'sequence', name='uq_workflow_history_entity_seq'),
    )
    op.create_index('ix_workflow_history_entity', 'workflow_history', ['entity_type', 'entity_id'])
    op.create_index('ix_workflow_history_stage_id', 'workflow_history', ['stage_id'])
    op.create_index('ix_workflow_history_action_by_user_id', 'workflow_history', ['action_by_user_id'])
    op.create_index('ix_workflow_history_action_date', 'workflow_history', ['action_date'])

    # ============================================================================
    # Procurement entities
    # ============================================================================
    op.create_table(
        'purchase_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('po_number', sa.String(length=32), nullable=False),
        sa.Column('supplier_name', sa.String(length=200), nullable=False),
        sa.Column('supplier_reference', sa.String(length=100), nullable=True),
        sa.Column('payment_terms', sa.String(length=100), nullable=True),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_received_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_backlog_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_fully_received', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_workflow_entity_columns(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_purchase_orders_po_number', 'purchase_orders', ['po_number'], unique=True)
    _index_entity('purchase_orders')

    op.create_table(
        'purchase_order_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purchase_order_id', sa.Integer(), sa.ForeignKey('purchase_orders.id'), nullable=False),
        sa.Column('line_no', sa.Integer(), nullable=False),
        sa.Column('product_code', sa.String(length=64), nullable=True),
        sa.Column('product_name', sa.String(length=200), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('received_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('purchase_order_id', 'line_no', name='uq_po_lines_po_line_no'),
    )
    op.create_index('ix_purchase_order_lines_purchase_order_id', 'purchase_order_lines', ['purchase_order_id'])

    op.create_table(
        'invoice_receivings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receiving_number', sa.String(length=32), nullable=False),
        sa.Column('purchase_order_id', sa.Integer(), sa.ForeignKey('purchase_orders.id'), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('invoice_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('qc_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('qc_remarks', sa.Text(), nullable=True),
        sa.Column('remarks', sa.Text(), nullable=True),
        *_workflow_entity_columns(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_invoice_receivings_receiving_number', 'invoice_receivings', ['receiving_number'],
                    unique=True)
    op.create_index('ix_invoice_receivings_purchase_order_id', 'invoice_receivings', ['purchase_order_id'])
    _index_entity('invoice_receivings')

    op.create_table(
        'invoice_receiving_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_receiving_id', sa.Integer(), sa.ForeignKey('invoice_receivings.id'), nullable=False),
        sa.Column('purchase_order_line_id', sa.Integer(), sa.ForeignKey('purchase_order_lines.id'),
                  nullable=False),
        sa.Column('received_quantity', sa.Integer(), nullable=False),
        sa.Column('batch_no', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='received'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_invoice_receiving_lines_invoice_receiving_id', 'invoice_receiving_lines',
                    ['invoice_receiving_id'])
    op.create_index('ix_invoice_receiving_lines_purchase_order_line_id', 'invoice_receiving_lines',
                    ['purchase_order_line_id'])

    op.create_table(
        'quality_controls',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('qc_number', sa.String(length=32), nullable=False),
        sa.Column('invoice_receiving_id', sa.Integer(), sa.ForeignKey('invoice_receivings.id'), nullable=False),
        sa.Column('priority', sa.String(length=16), nullable=False, server_default='medium'),
        sa.Column('overall_result', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('inspector_notes', sa.Text(), nullable=True),
        sa.Column('remarks', sa.Text(), nullable=True),
        *_workflow_entity_columns(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_quality_controls_qc_number', 'quality_controls', ['qc_number'], unique=True)
    op.create_index('ix_quality_controls_invoice_receiving_id', 'quality_controls', ['invoice_receiving_id'])
    _index_entity('quality_controls')

    op.create_table(
        'warehouse_approvals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('approval_number', sa.String(length=32), nullable=False),
        sa.Column('quality_control_id', sa.Integer(), sa.ForeignKey('quality_controls.id'), nullable=False),
        sa.Column('warehouse_location', sa.String(length=100), nullable=True),
        sa.Column('decision', sa.String(length=32), nullable=True),
        sa.Column('remarks', sa.Text(), nullable=True),
        *_workflow_entity_columns(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_warehouse_approvals_approval_number', 'warehouse_approvals', ['approval_number'],
                    unique=True)
    op.create_index('ix_warehouse_approvals_quality_control_id', 'warehouse_approvals', ['quality_control_id'])
    _index_entity('warehouse_approvals')

    # ============================================================================
    # Audit trail and notifications
    # ============================================================================
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('entity_number', sa.String(length=64), nullable=True),
        sa.Column('performed_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('performed_by_name', sa.String(length=128), nullable=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('category', sa.String(length=16), nullable=False),
        sa.Column('severity', sa.String(length=16), nullable=False, server_default='medium'),
        sa.Column('changes', sa.JSON(), nullable=False),
        sa.Column('context', sa.JSON(), nullable=False),
        sa.Column('is_system_generated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_performed_by_user_id', 'audit_logs', ['performed_by_user_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])
    op.create_index('ix_audit_logs_entity', 'audit_logs', ['entity_type', 'entity_id'])
    op.create_index('ix_audit_logs_action_created', 'audit_logs', ['action', 'created_at'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('recipient_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('template', sa.String(length=64), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('priority', sa.String(length=16), nullable=False, server_default='medium'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='unread'),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_recipient_user_id', 'notifications', ['recipient_user_id'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])
    op.create_index('ix_notifications_recipient_status', 'notifications', ['recipient_user_id', 'status'])


def downgrade():
    for table in (
        'notifications',
        'audit_logs',
        'warehouse_approvals',
        'quality_controls',
        'invoice_receiving_lines',
        'invoice_receivings',
        'purchase_order_lines',
        'purchase_orders',
        'workflow_history',
        'stage_permission_grants',
        'stage_permissions',
        'workflow_transitions',
        'workflow_stage_next_stages',
        'workflow_stage_required_permissions',
        'workflow_stages',
        'security_events',
        'session_tokens',
        'role_permissions',
        'user_roles',
        'permissions',
        'roles',
        'users',
    ):
        op.drop_table(table)
