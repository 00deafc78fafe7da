"""Payment engine base schema - loans, schedule, payments, GL, servicing cycle, reconciliation.

Revision ID: 0001_payment_engine_base
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_payment_engine_base'
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(precision=14, scale=2)


def upgrade() -> None:
    op.create_table(
        'loans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('loan_number', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'loan_number', name='uq_loans_tenant_loan_number'),
        sa.Index('ix_loans_tenant_id', 'tenant_id'),
        sa.Index('ix_loans_loan_number', 'loan_number'),
    )

    op.create_table(
        'svc_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('state', sa.String(), nullable=False, server_default='Active'),
        sa.Column('grace_days', sa.Integer(), nullable=True),
        sa.Column('pmt_principal_interest', MONEY, nullable=False, server_default='0'),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('loan_id'),
        sa.Index('ix_svc_accounts_tenant_id', 'tenant_id'),
    )

    op.create_table(
        'svc_schedule',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('installment_no', sa.Integer(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('principal_due', MONEY, nullable=False, server_default='0'),
        sa.Column('interest_due', MONEY, nullable=False, server_default='0'),
        sa.Column('escrow_due', MONEY, nullable=False, server_default='0'),
        sa.Column('principal_balance_after', MONEY, nullable=True),
        sa.Column('paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('loan_id', 'installment_no', name='uq_svc_schedule_loan_installment'),
        sa.Index('ix_svc_schedule_loan_id', 'loan_id'),
    )

    op.create_table(
        'pay_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('channel', sa.String(), nullable=False, server_default='LOCKBOX'),
        sa.Column('batch_date', sa.Date(), nullable=False),
        sa.Column('file_uri', sa.String(), nullable=True),
        sa.Column('file_sha256', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='Received'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('posted_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.Index('ix_pay_batches_tenant_id', 'tenant_id'),
    )

    op.create_table(
        'svc_txns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('alloc_principal', MONEY, nullable=False, server_default='0'),
        sa.Column('alloc_interest', MONEY, nullable=False, server_default='0'),
        sa.Column('alloc_escrow', MONEY, nullable=False, server_default='0'),
        sa.Column('alloc_fees', MONEY, nullable=False, server_default='0'),
        sa.Column('fee_code', sa.String(), nullable=True),
        sa.Column('installment_no', sa.Integer(), nullable=True),
        sa.Column('memo', sa.String(), nullable=True),
        sa.Column('ref', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.Index('ix_svc_txns_loan_id', 'loan_id'),
    )
    # One late fee per installment
    op.create_index(
        'uq_svc_txns_late_fee_installment',
        'svc_txns',
        ['loan_id', 'installment_no'],
        unique=True,
        postgresql_where=sa.text("fee_code = 'LATE'"),
        sqlite_where=sa.text("fee_code = 'LATE'"),
    )

    op.create_table(
        'pay_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('loan_id', sa.Integer(), nullable=True),
        sa.Column('loan_number', sa.String(), nullable=True),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('channel', sa.String(), nullable=False),
        sa.Column('reference', sa.String(), nullable=True),
        sa.Column('memo', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='Received'),
        sa.Column('allocation', sa.JSON(), nullable=True),
        sa.Column('posted_txn_id', sa.Integer(), nullable=True),
        sa.Column('receipt_id', sa.Integer(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['batch_id'], ['pay_batches.id'], ),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.ForeignKeyConstraint(['posted_txn_id'], ['svc_txns.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.Index('ix_pay_payments_tenant_id', 'tenant_id'),
        sa.Index('ix_pay_payments_loan_id', 'loan_id'),
        sa.Index('ix_pay_payments_loan_number', 'loan_number'),
        sa.Index('ix_pay_payments_reference', 'reference'),
        sa.Index('ix_pay_payments_status', 'status'),
        sa.Index('ix_pay_payments_created_at', 'created_at'),
    )

    op.create_table(
        'pay_receipts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=False),
        sa.Column('file_uri', sa.String(), nullable=False),
        sa.Column('file_sha256', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['payment_id'], ['pay_payments.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.Index('ix_pay_receipts_payment_id', 'payment_id'),
    )

    op.create_table(
        'pay_suspense',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('balance', MONEY, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'loan_id', name='uq_pay_suspense_tenant_loan'),
    )

    op.create_table(
        'svc_escrow_sub',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('bucket', sa.String(), nullable=False),
        sa.Column('balance', MONEY, nullable=False, server_default='0'),
        sa.Column('monthly_accrual', MONEY, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'loan_id', 'bucket', name='uq_svc_escrow_sub_bucket'),
        sa.Index('ix_svc_escrow_sub_loan_id', 'loan_id'),
    )

    op.create_table(
        'gl_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=True),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('debit_acct', sa.Integer(), nullable=False),
        sa.Column('credit_acct', sa.Integer(), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('memo', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.ForeignKeyConstraint(['payment_id'], ['pay_payments.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.Index('ix_gl_entries_tenant_id', 'tenant_id'),
        sa.Index('ix_gl_entries_loan_id', 'loan_id'),
    )

    op.create_table(
        'svc_cycle_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('as_of_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='started'),
        sa.Column('metrics', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'as_of_date', name='uq_svc_cycle_runs_tenant_date'),
    )

    op.create_table(
        'svc_statements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('statement_date', sa.Date(), nullable=False),
        sa.Column('cycle_label', sa.String(length=7), nullable=False),
        sa.Column('file_uri', sa.String(), nullable=False),
        sa.Column('file_sha256', sa.String(length=64), nullable=False),
        sa.Column('summary', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('loan_id', 'statement_date', name='uq_svc_statements_loan_date'),
        sa.Index('ix_svc_statements_loan_id', 'loan_id'),
    )

    op.create_table(
        'svc_vendors',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('next_due_date', sa.Date(), nullable=True),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.Index('ix_svc_vendors_loan_id', 'loan_id'),
    )

    op.create_table(
        'svc_vendor_bills',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('vendor_id', sa.Integer(), nullable=False),
        sa.Column('bucket', sa.String(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='Queued'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.ForeignKeyConstraint(['vendor_id'], ['svc_vendors.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('loan_id', 'vendor_id', 'due_date', name='uq_svc_vendor_bills_vendor_due'),
        sa.Index('ix_svc_vendor_bills_loan_id', 'loan_id'),
    )

    op.create_table(
        'svc_disbursements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('vendor_id', sa.Integer(), nullable=False),
        sa.Column('bill_id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(), nullable=False),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='Requested'),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.ForeignKeyConstraint(['vendor_id'], ['svc_vendors.id'], ),
        sa.ForeignKeyConstraint(['bill_id'], ['svc_vendor_bills.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.Index('ix_svc_disbursements_loan_id', 'loan_id'),
    )

    op.create_table(
        'recon_bank',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('stmt_date', sa.Date(), nullable=False),
        sa.Column('opening_balance', MONEY, nullable=False),
        sa.Column('closing_balance', MONEY, nullable=False),
        sa.Column('file_uri', sa.String(), nullable=False),
        sa.Column('file_sha256', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.Index('ix_recon_bank_tenant_id', 'tenant_id'),
        sa.Index('ix_recon_bank_stmt_date', 'stmt_date'),
    )

    op.create_table(
        'recon_bank_txns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('bank_id', sa.Integer(), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('reference', sa.String(), nullable=True),
        sa.Column('description', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['bank_id'], ['recon_bank.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.Index('ix_recon_bank_txns_bank_id', 'bank_id'),
    )

    op.create_table(
        'recon_matches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('bank_id', sa.Integer(), nullable=False),
        sa.Column('bank_txn_id', sa.Integer(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('match_type', sa.String(), nullable=False),
        sa.Column('requires_review', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('matched_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['bank_id'], ['recon_bank.id'], ),
        sa.ForeignKeyConstraint(['bank_txn_id'], ['recon_bank_txns.id'], ),
        sa.ForeignKeyConstraint(['payment_id'], ['pay_payments.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bank_txn_id'),
        sa.Index('ix_recon_matches_tenant_id', 'tenant_id'),
        sa.Index('ix_recon_matches_bank_id', 'bank_id'),
        sa.Index('ix_recon_matches_payment_id', 'payment_id'),
    )


def downgrade() -> None:
    for table in (
        'recon_matches', 'recon_bank_txns', 'recon_bank',
        'svc_disbursements', 'svc_vendor_bills', 'svc_vendors', 'svc_statements',
        'svc_cycle_runs', 'gl_entries', 'svc_escrow_sub', 'pay_suspense',
        'pay_receipts', 'pay_payments',
    ):
        op.drop_table(table)
    op.drop_index('uq_svc_txns_late_fee_installment', table_name='svc_txns')
    for table in ('svc_txns', 'pay_batches', 'svc_schedule', 'svc_accounts', 'loans'):
        op.drop_table(table)
