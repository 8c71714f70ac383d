"""initial cash core schema

Revision ID: c4a1e0b7d2f9
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the cash core from scratch:
- cash_registers / cash_sessions: one OPEN session per register (partial unique index)
- movements: append-only cash journal
- sales / credit_notes / credit_note_lines: refundable balance per sale
- clients / accounts_receivable / receivable_payments: credit lines and cobranza
- audit_events: append-only audit and notification log
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c4a1e0b7d2f9'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # cash_registers: physical tills (identity only)
    # ============================================================================
    op.create_table(
        'cash_registers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'code', name='uq_cash_registers_tenant_code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_registers_tenant_id', 'cash_registers', ['tenant_id'])
    op.create_index('ix_cash_registers_is_active', 'cash_registers', ['is_active'])

    # ============================================================================
    # cash_sessions: one cashier's shift on one register
    # ============================================================================
    op.create_table(
        'cash_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('cash_register_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('state', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('opening_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('theoretical_amount_cents', sa.Integer(), nullable=True),
        sa.Column('counted_amount_cents', sa.Integer(), nullable=True),
        sa.Column('discrepancy_cents', sa.Integer(), nullable=True),
        sa.Column('classification', sa.String(length=16), nullable=True),
        sa.Column('closure_type', sa.String(length=16), nullable=True),
        sa.Column('closure_reason', sa.Text(), nullable=True),
        sa.Column('closed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['cash_register_id'], ['cash_registers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('opening_amount_cents >= 0', name='ck_cash_sessions_opening_non_negative'),
        sa.CheckConstraint(
            "closure_type IS NULL OR closure_type <> 'ADMINISTRATIVE' OR closure_reason IS NOT NULL",
            name='ck_cash_sessions_admin_reason',
        ),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_sessions_tenant_id', 'cash_sessions', ['tenant_id'])
    op.create_index('ix_cash_sessions_cash_register_id', 'cash_sessions', ['cash_register_id'])
    op.create_index('ix_cash_sessions_user_id', 'cash_sessions', ['user_id'])
    op.create_index('ix_cash_sessions_state', 'cash_sessions', ['state'])
    op.create_index('ix_cash_sessions_opened_at', 'cash_sessions', ['opened_at'])
    op.create_index('ix_cash_sessions_tenant_state', 'cash_sessions', ['tenant_id', 'state'])
    op.create_index(
        'uq_cash_sessions_one_open_per_register',
        'cash_sessions',
        ['cash_register_id'],
        unique=True,
        sqlite_where=sa.text("state = 'OPEN'"),
        postgresql_where=sa.text("state = 'OPEN'"),
    )

    # ============================================================================
    # clients: credit lines
    # ============================================================================
    op.create_table(
        'clients',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('document_number', sa.String(length=32), nullable=True),
        sa.Column('limite_credito_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('dias_credito', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credit_sales_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'document_number', name='uq_clients_tenant_document'),
        sa.CheckConstraint('limite_credito_cents >= 0', name='ck_clients_credit_limit_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_clients_tenant_id', 'clients', ['tenant_id'])

    # ============================================================================
    # sales
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('cash_register_id', sa.Integer(), nullable=True),
        sa.Column('session_id', sa.Integer(), nullable=True),
        sa.Column('client_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('condicion_pago', sa.String(length=16), nullable=False, server_default='CONTADO'),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='EFECTIVO'),
        sa.Column('initial_payment_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sunat_state', sa.String(length=16), nullable=False, server_default='PENDIENTE'),
        sa.Column('credit_notes_issued', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['cash_register_id'], ['cash_registers.id']),
        sa.ForeignKeyConstraint(['session_id'], ['cash_sessions.id']),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('total_cents > 0', name='ck_sales_total_positive'),
        sa.CheckConstraint('initial_payment_cents >= 0', name='ck_sales_initial_payment_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_tenant_id', 'sales', ['tenant_id'])
    op.create_index('ix_sales_cash_register_id', 'sales', ['cash_register_id'])
    op.create_index('ix_sales_session_id', 'sales', ['session_id'])
    op.create_index('ix_sales_client_id', 'sales', ['client_id'])
    op.create_index('ix_sales_sunat_state', 'sales', ['sunat_state'])
    op.create_index('ix_sales_created_at', 'sales', ['created_at'])
    op.create_index('ix_sales_tenant_created', 'sales', ['tenant_id', 'created_at'])

    # ============================================================================
    # credit_notes / credit_note_lines
    # ============================================================================
    op.create_table(
        'credit_notes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('tipo_nota', sa.String(length=48), nullable=False),
        sa.Column('motivo_sustento', sa.String(length=500), nullable=False),
        sa.Column('monto_total_cents', sa.Integer(), nullable=False),
        sa.Column('sunat_state', sa.String(length=16), nullable=False, server_default='PENDIENTE'),
        sa.Column('devolver_stock', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('devolver_efectivo', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('cash_register_id', sa.Integer(), nullable=True),
        sa.Column('refund_movement_id', sa.Integer(), nullable=True),
        sa.Column('cash_refund_pending', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('refund_reversal_movement_id', sa.Integer(), nullable=True),
        sa.Column('cash_reversal_pending', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['cash_register_id'], ['cash_registers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('monto_total_cents > 0', name='ck_credit_notes_amount_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_credit_notes_tenant_id', 'credit_notes', ['tenant_id'])
    op.create_index('ix_credit_notes_sale_id', 'credit_notes', ['sale_id'])
    op.create_index('ix_credit_notes_tipo_nota', 'credit_notes', ['tipo_nota'])
    op.create_index('ix_credit_notes_sunat_state', 'credit_notes', ['sunat_state'])
    op.create_index('ix_credit_notes_created_at', 'credit_notes', ['created_at'])
    op.create_index('ix_credit_notes_sale_state', 'credit_notes', ['sale_id', 'sunat_state'])

    op.create_table(
        'credit_note_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('credit_note_id', sa.Integer(), nullable=False),
        sa.Column('producto_id', sa.Integer(), nullable=False),
        sa.Column('cantidad', sa.Numeric(12, 3), nullable=False),
        sa.Column('precio_unitario_cents', sa.Integer(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['credit_note_id'], ['credit_notes.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_credit_note_lines_credit_note_id', 'credit_note_lines', ['credit_note_id'])

    # ============================================================================
    # accounts_receivable / receivable_payments
    # ============================================================================
    op.create_table(
        'accounts_receivable',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('saldo_pendiente_cents', sa.Integer(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='VIGENTE'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id'),
        sa.CheckConstraint('saldo_pendiente_cents >= 0', name='ck_receivables_balance_non_negative'),
        sa.CheckConstraint('saldo_pendiente_cents <= amount_cents', name='ck_receivables_balance_within_amount'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_accounts_receivable_tenant_id', 'accounts_receivable', ['tenant_id'])
    op.create_index('ix_accounts_receivable_client_id', 'accounts_receivable', ['client_id'])
    op.create_index('ix_accounts_receivable_status', 'accounts_receivable', ['status'])
    op.create_index('ix_receivables_client_status', 'accounts_receivable', ['client_id', 'status'])

    op.create_table(
        'receivable_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('receivable_id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['receivable_id'], ['accounts_receivable.id']),
        sa.ForeignKeyConstraint(['session_id'], ['cash_sessions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount_cents > 0', name='ck_receivable_payments_amount_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_receivable_payments_tenant_id', 'receivable_payments', ['tenant_id'])
    op.create_index('ix_receivable_payments_receivable_id', 'receivable_payments', ['receivable_id'])
    op.create_index('ix_receivable_payments_session_id', 'receivable_payments', ['session_id'])

    # ============================================================================
    # movements: append-only cash journal
    # ============================================================================
    op.create_table(
        'movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='EFECTIVO'),
        sa.Column('description', sa.String(length=500), nullable=False),
        sa.Column('source', sa.String(length=16), nullable=False, server_default='MANUAL'),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('credit_note_id', sa.Integer(), nullable=True),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['cash_sessions.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['credit_note_id'], ['credit_notes.id']),
        sa.ForeignKeyConstraint(['payment_id'], ['receivable_payments.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount_cents > 0', name='ck_movements_amount_positive'),
        sa.CheckConstraint(
            "(CASE WHEN sale_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN credit_note_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN payment_id IS NULL THEN 0 ELSE 1 END) <= 1",
            name='ck_movements_single_reference',
        ),
        sqlite_autoincrement=True
    )
    op.create_index('ix_movements_tenant_id', 'movements', ['tenant_id'])
    op.create_index('ix_movements_session_id', 'movements', ['session_id'])
    op.create_index('ix_movements_type', 'movements', ['type'])
    op.create_index('ix_movements_source', 'movements', ['source'])
    op.create_index('ix_movements_sale_id', 'movements', ['sale_id'])
    op.create_index('ix_movements_credit_note_id', 'movements', ['credit_note_id'])
    op.create_index('ix_movements_payment_id', 'movements', ['payment_id'])
    op.create_index('ix_movements_created_at', 'movements', ['created_at'])
    op.create_index('ix_movements_session_created', 'movements', ['session_id', 'created_at'])

    # ============================================================================
    # audit_events: append-only audit / notification log
    # ============================================================================
    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('event_category', sa.String(length=32), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('subject_user_id', sa.Integer(), nullable=True),
        sa.Column('cash_register_id', sa.Integer(), nullable=True),
        sa.Column('session_id', sa.Integer(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('credit_note_id', sa.Integer(), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=True),
        sa.Column('discrepancy_cents', sa.Integer(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_events_tenant_id', 'audit_events', ['tenant_id'])
    op.create_index('ix_audit_events_event_type', 'audit_events', ['event_type'])
    op.create_index('ix_audit_events_event_category', 'audit_events', ['event_category'])
    op.create_index('ix_audit_events_entity_id', 'audit_events', ['entity_id'])
    op.create_index('ix_audit_events_actor_user_id', 'audit_events', ['actor_user_id'])
    op.create_index('ix_audit_events_subject_user_id', 'audit_events', ['subject_user_id'])
    op.create_index('ix_audit_events_session_id', 'audit_events', ['session_id'])
    op.create_index('ix_audit_events_occurred_at', 'audit_events', ['occurred_at'])
    op.create_index('ix_audit_events_tenant_occurred', 'audit_events', ['tenant_id', 'occurred_at'])


def downgrade():
    op.drop_table('audit_events')
    op.drop_table('movements')
    op.drop_table('receivable_payments')
    op.drop_table('accounts_receivable')
    op.drop_table('credit_note_lines')
    op.drop_table('credit_notes')
    op.drop_table('sales')
    op.drop_table('clients')
    op.drop_table('cash_sessions')
    op.drop_table('cash_registers')
