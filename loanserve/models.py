# models.py
# SQLAlchemy models for payment ingestion, posting, servicing cycle and reconciliation.

from sqlalchemy import (
    Boolean, Column, Integer, String, DateTime, Date, ForeignKey, Numeric, Text, JSON,
    Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from .database import Base
from .payment_utils import utcnow

Money = Numeric(14, 2)


class Loan(Base):
    __tablename__ = "loans"
    __table_args__ = (
        UniqueConstraint("tenant_id", "loan_number", name="uq_loans_tenant_loan_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False, index=True)
    loan_number = Column(String, nullable=False, index=True, comment="Human-readable loan number used by remitters")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    account = relationship("ServicingAccount", uselist=False, back_populates="loan")
    schedule = relationship("ScheduleInstallment", back_populates="loan", order_by="ScheduleInstallment.installment_no")


class ServicingAccount(Base):
    __tablename__ = "svc_accounts"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False, index=True)
    loan_id = Column(Integer, ForeignKey("loans.id"), unique=True, nullable=False)
    # STATES: Active, Suspended, PaidOff, ChargedOff - only 'Active' accounts accept postings
    state = Column(String, default="Active", nullable=False)
    grace_days = Column(Integer, nullable=True, comment="Overrides LATE_FEE_GRACE_DAYS when set")
    pmt_principal_interest = Column(Money, nullable=False, default=0)
    activated_at = Column(DateTime, default=utcnow)

    loan = relationship("Loan", back_populates="account")


class ScheduleInstallment(Base):
    __tablename__ = "svc_schedule"
    __table_args__ = (
        UniqueConstraint("loan_id", "installment_no", name="uq_svc_schedule_loan_installment"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=False, index=True)
    installment_no = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    principal_due = Column(Money, nullable=False, default=0)
    interest_due = Column(Money, nullable=False, default=0)
    escrow_due = Column(Money, nullable=False, default=0)
    principal_balance_after = Column(Money, nullable=True)
    paid = Column(Boolean, default=False, nullable=False)
    paid_at = Column(DateTime, nullable=True)

    loan = relationship("Loan", back_populates="schedule")


class PaymentBatch(Base):
    __tablename__ = "pay_batches"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False, index=True)
    channel = Column(String, nullable=False, default="LOCKBOX")
    batch_date = Column(Date, nullable=False)
    file_uri = Column(String, nullable=True)
    file_sha256 = Column(String(64), nullable=True)
    # STATES: Received, Posted (every row succeeded), Failed (at least one row failed)
    status = Column(String, default="Received", nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    posted_at = Column(DateTime, nullable=True)

    payments = relationship("Payment", back_populates="batch")


class Payment(Base):
    __tablename__ = "pay_payments"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("pay_batches.id"), nullable=True)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=True, index=True)
    loan_number = Column(String, nullable=True, index=True)
    amount = Column(Money, nullable=False)  # signed: reversals are negative
    channel = Column(String, nullable=False)  # ACH, CARD, LOCKBOX, MANUAL
    reference = Column(String, nullable=True, index=True)
    memo = Column(String, nullable=True)
    # STATES: Received -> Suspense | Posted | Rejected; Posted -> Reversed (NSF/chargeback)
    status = Column(String, default="Received", nullable=False, index=True)
    allocation = Column(JSON, nullable=True)
    posted_txn_id = Column(Integer, ForeignKey("svc_txns.id"), nullable=True)
    receipt_id = Column(Integer, nullable=True)  # pay_receipts.id, set once a receipt is stored
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    batch = relationship("PaymentBatch", back_populates="payments")


class PaymentReceipt(Base):
    __tablename__ = "pay_receipts"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False)
    payment_id = Column(Integer, ForeignKey("pay_payments.id"), nullable=False, index=True)
    file_uri = Column(String, nullable=False)
    file_sha256 = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class ServicingTransaction(Base):
    __tablename__ = "svc_txns"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=False, index=True)
    type = Column(String, nullable=False)  # PAYMENT, FEE
    amount = Column(Money, nullable=False)
    alloc_principal = Column(Money, nullable=False, default=0)
    alloc_interest = Column(Money, nullable=False, default=0)
    alloc_escrow = Column(Money, nullable=False, default=0)
    alloc_fees = Column(Money, nullable=False, default=0)
    fee_code = Column(String, nullable=True)  # LATE
    installment_no = Column(Integer, nullable=True)
    memo = Column(String, nullable=True)
    ref = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


# One late fee per installment; the store rejects a second one
Index(
    "uq_svc_txns_late_fee_installment",
    ServicingTransaction.loan_id,
    ServicingTransaction.installment_no,
    unique=True,
    postgresql_where=ServicingTransaction.fee_code == "LATE",
    sqlite_where=ServicingTransaction.fee_code == "LATE",
)


class SuspenseBalance(Base):
    __tablename__ = "pay_suspense"
    __table_args__ = (
        UniqueConstraint("tenant_id", "loan_id", name="uq_pay_suspense_tenant_loan"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=False)
    balance = Column(Money, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class EscrowSubAccount(Base):
    __tablename__ = "svc_escrow_sub"
    __table_args__ = (
        UniqueConstraint("tenant_id", "loan_id", "bucket", name="uq_svc_escrow_sub_bucket"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=False, index=True)
    bucket = Column(String, nullable=False)  # TAX, HOI, FLOOD, HOA
    balance = Column(Money, nullable=False, default=0)
    monthly_accrual = Column(Money, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class GLEntry(Base):
    """
    General ledger line. Every entry is balanced by construction: one debit
    account, one credit account, one positive amount.
    """
    __tablename__ = "gl_entries"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False, index=True)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=True, index=True)
    payment_id = Column(Integer, ForeignKey("pay_payments.id"), nullable=True)
    debit_acct = Column(Integer, nullable=False)
    credit_acct = Column(Integer, nullable=False)
    amount = Column(Money, nullable=False)
    memo = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class CycleRun(Base):
    __tablename__ = "svc_cycle_runs"
    __table_args__ = (
        UniqueConstraint("tenant_id", "as_of_date", name="uq_svc_cycle_runs_tenant_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False)
    as_of_date = Column(Date, nullable=False)
    status = Column(String, default="started", nullable=False)  # started, completed, failed
    metrics = Column(JSON, nullable=True)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)


class Statement(Base):
    __tablename__ = "svc_statements"
    __table_args__ = (
        UniqueConstraint("loan_id", "statement_date", name="uq_svc_statements_loan_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=False, index=True)
    statement_date = Column(Date, nullable=False)
    cycle_label = Column(String(7), nullable=False)
    file_uri = Column(String, nullable=False)
    file_sha256 = Column(String(64), nullable=False)
    summary = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Vendor(Base):
    __tablename__ = "svc_vendors"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=False, index=True)
    type = Column(String, nullable=False)  # TAX, HOI, FLOOD, HOA
    name = Column(String, nullable=False)
    next_due_date = Column(Date, nullable=True)


class VendorBill(Base):
    __tablename__ = "svc_vendor_bills"
    __table_args__ = (
        UniqueConstraint("loan_id", "vendor_id", "due_date", name="uq_svc_vendor_bills_vendor_due"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("svc_vendors.id"), nullable=False)
    bucket = Column(String, nullable=False)
    due_date = Column(Date, nullable=False)
    amount = Column(Money, nullable=False)
    # Queued: waiting on escrow funds; Scheduled: disbursement requested
    status = Column(String, default="Queued", nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    vendor = relationship("Vendor")


class Disbursement(Base):
    __tablename__ = "svc_disbursements"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("svc_vendors.id"), nullable=False)
    bill_id = Column(Integer, ForeignKey("svc_vendor_bills.id"), nullable=False)
    method = Column(String, nullable=False)  # ACH, CHECK, WEBHOOK
    scheduled_date = Column(Date, nullable=False)
    amount = Column(Money, nullable=False)
    status = Column(String, default="Requested", nullable=False)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class BankStatement(Base):
    __tablename__ = "recon_bank"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False, index=True)
    stmt_date = Column(Date, nullable=False, index=True)
    opening_balance = Column(Money, nullable=False)
    closing_balance = Column(Money, nullable=False)
    file_uri = Column(String, nullable=False)
    file_sha256 = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    transactions = relationship("BankTransaction", back_populates="statement")


class BankTransaction(Base):
    __tablename__ = "recon_bank_txns"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False)
    bank_id = Column(Integer, ForeignKey("recon_bank.id"), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    reference = Column(String, nullable=True)
    description = Column(String, nullable=True)

    statement = relationship("BankStatement", back_populates="transactions")


class ReconciliationMatch(Base):
    __tablename__ = "recon_matches"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False, index=True)
    bank_id = Column(Integer, ForeignKey("recon_bank.id"), nullable=False, index=True)
    bank_txn_id = Column(Integer, ForeignKey("recon_bank_txns.id"), nullable=False, unique=True)
    payment_id = Column(Integer, ForeignKey("pay_payments.id"), nullable=True, index=True)
    amount = Column(Money, nullable=False)
    match_type = Column(String, nullable=False)  # Auto, Manual
    requires_review = Column(Boolean, default=False, nullable=False)
    matched_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    bank_transaction = relationship("BankTransaction")
