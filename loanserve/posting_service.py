"""
Posting Service: One Payment, One Transaction
=============================================

Posting resolves the loan, checks the servicing account, picks the current
unpaid installment, decides between suspense and full posting, allocates, and
writes schedule, suspense and GL changes. All of it commits together or not at
all.

FLOW:
1. Resolve loan (loan_id, else loan_number within the tenant)
2. Servicing account must be Active (row locked)
3. Current unpaid installment (row locked)
4. amount < min(PAYMENT_MIN_TO_POST, P+I+E due) -> suspense
5. Allocate against P/I/E due and accrued unpaid fees
6. Suspense (or leftover > 0): whole amount to suspense, GL cash -> suspense
7. Otherwise: PAYMENT txn, installment paid flag, escrow sub-account, GL per component

Routing failures end as Rejected. Unexpected errors roll everything back, then
the payment is marked Rejected in a separate transaction.
"""

import logging
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .allocation_service import AllocationEngine, DueAmounts, get_allocation_engine
from .audit_service import AuditService
from .config import settings
from .database import dialect_insert
from .exceptions import PaymentNotFound
from .ledger_service import LedgerService
from .models import (
    EscrowSubAccount, Loan, Payment, ScheduleInstallment, ServicingAccount,
    ServicingTransaction
)
from .payment_utils import CENT, ZERO, near_eq, round_cents, to_decimal, utcnow
from .suspense_service import SuspenseLedger

log = logging.getLogger(__name__)

POSTABLE_STATUSES = ("Received", "Suspense")

REJECT_UNROUTABLE = "Unroutable - no loan match"
REJECT_INACTIVE = "Loan not active in servicing"
REJECT_NO_SCHEDULE = "No unpaid schedule rows"
REJECT_NON_POSITIVE = "Payment amount must be positive"


class PostingService:
    """Posting engine for individual payments"""

    @staticmethod
    async def post_payment(
        db: AsyncSession,
        tenant_id: str,
        payment_id: int,
        allocation_engine: Optional[AllocationEngine] = None
    ) -> Dict:
        """
        Post one payment.

        Returns:
            {"status": "Posted"|"Suspense"|"Rejected", "allocation"?, "transactionId"?, "error"?}

        Raises:
            PaymentNotFound: No payment with that id for the tenant
        """
        result = await db.execute(
            select(Payment)
            .where(and_(Payment.id == payment_id, Payment.tenant_id == tenant_id))
            .with_for_update()
        )
        payment = result.scalars().first()
        if payment is None:
            raise PaymentNotFound(f"Payment {payment_id} not found")

        if payment.status not in POSTABLE_STATUSES:
            await db.rollback()
            return {"status": payment.status, "error": f"Payment is {payment.status}"}

        engine = allocation_engine or get_allocation_engine()

        try:
            outcome = await PostingService._post_locked(db, tenant_id, payment, engine)
            await db.commit()
        except Exception as e:
            await db.rollback()
            log.exception(f"Posting payment {payment_id} failed; rolled back")
            await PostingService._mark_rejected(db, tenant_id, payment_id, str(e))
            return {"status": "Rejected", "error": str(e)}

        if outcome["status"] == "Rejected":
            log.warning(f"Payment {payment_id} rejected: {outcome.get('error')}")
        else:
            log.info(f"Payment {payment_id} -> {outcome['status']} ({payment.amount})")

        await AuditService.log_payment_action(
            action="post",
            payment_id=payment_id,
            tenant_id=tenant_id,
            details=outcome,
            reason=outcome.get("error")
        )
        return outcome

    @staticmethod
    async def _post_locked(
        db: AsyncSession,
        tenant_id: str,
        payment: Payment,
        engine: AllocationEngine
    ) -> Dict:
        amount = round_cents(payment.amount)

        loan = await PostingService._resolve_loan(db, tenant_id, payment)
        if loan is None:
            return PostingService._reject(payment, REJECT_UNROUTABLE)
        payment.loan_id = loan.id
        if not payment.loan_number:
            payment.loan_number = loan.loan_number

        if amount <= 0:
            return PostingService._reject(payment, REJECT_NON_POSITIVE)

        account_result = await db.execute(
            select(ServicingAccount)
            .where(and_(ServicingAccount.loan_id == loan.id, ServicingAccount.tenant_id == tenant_id))
            .with_for_update()
        )
        account = account_result.scalars().first()
        if account is None or account.state != "Active":
            return PostingService._reject(payment, REJECT_INACTIVE)

        installment = await PostingService.current_installment(db, loan.id, lock=True)
        if installment is None:
            return PostingService._reject(payment, REJECT_NO_SCHEDULE)

        dues = DueAmounts(
            principal=round_cents(installment.principal_due),
            interest=round_cents(installment.interest_due),
            escrow=round_cents(installment.escrow_due),
            fees=await PostingService.accrued_fees(db, loan.id)
        )
        scheduled_due = round_cents(dues.principal + dues.interest + dues.escrow)
        threshold = min(round_cents(settings.PAYMENT_MIN_TO_POST), scheduled_due)

        allocation = engine.allocate(amount, dues)

        if amount < threshold or allocation.leftover > 0:
            return await PostingService._to_suspense(db, tenant_id, payment, loan.id, amount, allocation)

        return await PostingService._apply(db, tenant_id, payment, loan.id, installment, dues, allocation)

    @staticmethod
    def _reject(payment: Payment, reason: str) -> Dict:
        payment.status = "Rejected"
        payment.error = reason
        return {"status": "Rejected", "error": reason}

    @staticmethod
    async def _resolve_loan(db: AsyncSession, tenant_id: str, payment: Payment) -> Optional[Loan]:
        if payment.loan_id is not None:
            result = await db.execute(
                select(Loan).where(and_(Loan.id == payment.loan_id, Loan.tenant_id == tenant_id))
            )
            return result.scalars().first()
        if payment.loan_number:
            result = await db.execute(
                select(Loan).where(and_(Loan.loan_number == payment.loan_number, Loan.tenant_id == tenant_id))
            )
            return result.scalars().first()
        return None

    @staticmethod
    async def current_installment(db: AsyncSession, loan_id: int, lock: bool = False) -> Optional[ScheduleInstallment]:
        """Lowest-numbered unpaid installment for the loan."""
        stmt = (
            select(ScheduleInstallment)
            .where(and_(ScheduleInstallment.loan_id == loan_id, ScheduleInstallment.paid == False))
            .order_by(ScheduleInstallment.installment_no)
            .limit(1)
        )
        if lock:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def accrued_fees(db: AsyncSession, loan_id: int) -> Decimal:
        """Fees assessed on the loan minus fees already applied by payments, floored at zero."""
        charged_result = await db.execute(
            select(func.coalesce(func.sum(ServicingTransaction.alloc_fees), 0)).where(
                and_(ServicingTransaction.loan_id == loan_id, ServicingTransaction.type == "FEE")
            )
        )
        paid_result = await db.execute(
            select(func.coalesce(func.sum(ServicingTransaction.alloc_fees), 0)).where(
                and_(ServicingTransaction.loan_id == loan_id, ServicingTransaction.type == "PAYMENT")
            )
        )
        charged = to_decimal(charged_result.scalar() or 0)
        paid = to_decimal(paid_result.scalar() or 0)
        return max(round_cents(charged - paid), ZERO)

    @staticmethod
    async def _to_suspense(db, tenant_id, payment, loan_id, amount, allocation) -> Dict:
        await SuspenseLedger.increment(db, tenant_id, loan_id, amount)
        await LedgerService.record_cash_receipt(
            db,
            tenant_id=tenant_id,
            credit_acct=settings.GL_SUSPENSE_ACCT,
            amount=amount,
            memo=f"Payment {payment.id} to suspense",
            loan_id=loan_id,
            payment_id=payment.id
        )
        payment.status = "Suspense"
        payment.allocation = allocation.as_dict()
        payment.error = None
        payment.updated_at = utcnow()
        return {"status": "Suspense", "allocation": allocation.as_dict()}

    @staticmethod
    async def _apply(db, tenant_id, payment, loan_id, installment, dues, allocation) -> Dict:
        txn = ServicingTransaction(
            tenant_id=tenant_id,
            loan_id=loan_id,
            type="PAYMENT",
            amount=round_cents(payment.amount),
            alloc_principal=allocation.principal,
            alloc_interest=allocation.interest,
            alloc_escrow=allocation.escrow,
            alloc_fees=allocation.fees,
            installment_no=installment.installment_no,
            memo=payment.memo,
            ref={"paymentId": payment.id, "reference": payment.reference, "channel": payment.channel}
        )
        db.add(txn)
        await db.flush()

        fully_paid = (
            near_eq(allocation.principal, dues.principal, CENT)
            and near_eq(allocation.interest, dues.interest, CENT)
            and near_eq(allocation.escrow, dues.escrow, CENT)
        )
        if fully_paid:
            installment.paid = True
            installment.paid_at = utcnow()

        if allocation.escrow > 0:
            await PostingService._credit_escrow(db, tenant_id, loan_id, "TAX", allocation.escrow)

        gl_targets = (
            (allocation.interest, settings.GL_INTEREST_INCOME_ACCT, "interest"),
            (allocation.fees, settings.GL_FEE_INCOME_ACCT, "fees"),
            (allocation.escrow, settings.GL_ESCROW_LIABILITY_ACCT, "escrow"),
            (allocation.principal, settings.GL_LOAN_PRINCIPAL_ACCT, "principal"),
        )
        for part, credit_acct, label in gl_targets:
            if part > 0:
                await LedgerService.record_cash_receipt(
                    db,
                    tenant_id=tenant_id,
                    credit_acct=credit_acct,
                    amount=part,
                    memo=f"Payment {payment.id} {label}",
                    loan_id=loan_id,
                    payment_id=payment.id
                )

        payment.status = "Posted"
        payment.allocation = allocation.as_dict()
        payment.posted_txn_id = txn.id
        payment.error = None
        payment.updated_at = utcnow()
        return {
            "status": "Posted",
            "allocation": allocation.as_dict(),
            "transactionId": txn.id,
            "installmentPaid": fully_paid
        }

    @staticmethod
    async def _credit_escrow(db: AsyncSession, tenant_id: str, loan_id: int, bucket: str, amount: Decimal) -> None:
        """Insert-or-increment the escrow sub-account for a bucket."""
        now = utcnow()
        insert = dialect_insert(db)
        stmt = insert(EscrowSubAccount).values(
            tenant_id=tenant_id,
            loan_id=loan_id,
            bucket=bucket,
            balance=amount,
            monthly_accrual=0,
            updated_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[EscrowSubAccount.tenant_id, EscrowSubAccount.loan_id, EscrowSubAccount.bucket],
            set_={"balance": EscrowSubAccount.balance + stmt.excluded.balance, "updated_at": now}
        )
        await db.execute(stmt)

    @staticmethod
    async def _mark_rejected(db: AsyncSession, tenant_id: str, payment_id: int, error: str) -> None:
        try:
            result = await db.execute(
                select(Payment).where(and_(Payment.id == payment_id, Payment.tenant_id == tenant_id))
            )
            payment = result.scalars().first()
            if payment is not None and payment.status in POSTABLE_STATUSES:
                payment.status = "Rejected"
                payment.error = error
                payment.updated_at = utcnow()
                await db.commit()
        except Exception as e:
            await db.rollback()
            log.error(f"Could not mark payment {payment_id} rejected: {e}")
