"""
Ledger Service: Double-Entry GL Postings
========================================

Every money movement in the payment engine is written as GLEntry rows, each
carrying one debit account, one credit account and one positive amount.

PRINCIPLE: Account balance = sum(debits to account) - sum(credits to account)

This ensures:
✓ Money is never created or destroyed (every row is balanced by construction)
✓ Every entry is linked to a tenant, and to a loan/payment where one exists
✓ Cash sits on one side of every payment posting
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .models import GLEntry
from .payment_utils import ZERO, round_cents, to_decimal

log = logging.getLogger(__name__)


class LedgerService:
    """Service for writing and reading GL entries"""

    @staticmethod
    async def record_entry(
        db: AsyncSession,
        tenant_id: str,
        debit_acct: int,
        credit_acct: int,
        amount: Decimal,
        memo: str,
        loan_id: Optional[int] = None,
        payment_id: Optional[int] = None
    ) -> GLEntry:
        """
        Add one balanced GL entry to the current transaction.

        Nothing is committed here: the caller owns the transaction, so the entry
        lands together with the rest of the posting or not at all.

        Raises:
            ValueError: If amount <= 0 or debit and credit accounts are the same
        """
        amount = round_cents(amount)
        if amount <= 0:
            raise ValueError(f"GL amount must be positive, got {amount}")

        if debit_acct == credit_acct:
            raise ValueError(f"Debit and credit account are both {debit_acct}")

        entry = GLEntry(
            tenant_id=tenant_id,
            loan_id=loan_id,
            payment_id=payment_id,
            debit_acct=debit_acct,
            credit_acct=credit_acct,
            amount=amount,
            memo=memo
        )
        db.add(entry)
        await db.flush()
        return entry

    @staticmethod
    async def record_cash_receipt(
        db: AsyncSession,
        tenant_id: str,
        credit_acct: int,
        amount: Decimal,
        memo: str,
        loan_id: Optional[int] = None,
        payment_id: Optional[int] = None
    ) -> GLEntry:
        """Debit cash, credit credit_acct."""
        return await LedgerService.record_entry(
            db,
            tenant_id=tenant_id,
            debit_acct=settings.GL_CASH_ACCT,
            credit_acct=credit_acct,
            amount=amount,
            memo=memo,
            loan_id=loan_id,
            payment_id=payment_id
        )

    @staticmethod
    async def get_account_balance(db: AsyncSession, tenant_id: str, acct: int) -> Decimal:
        """
        Net balance of one GL account for a tenant.

        Balance = sum(debits) - sum(credits)
        """
        debits_result = await db.execute(
            select(func.coalesce(func.sum(GLEntry.amount), 0)).where(
                and_(GLEntry.tenant_id == tenant_id, GLEntry.debit_acct == acct)
            )
        )
        credits_result = await db.execute(
            select(func.coalesce(func.sum(GLEntry.amount), 0)).where(
                and_(GLEntry.tenant_id == tenant_id, GLEntry.credit_acct == acct)
            )
        )
        debits = to_decimal(debits_result.scalar() or 0)
        credits = to_decimal(credits_result.scalar() or 0)
        return round_cents(debits - credits)

    @staticmethod
    async def get_entries_for_loan(db: AsyncSession, tenant_id: str, loan_id: int) -> List[GLEntry]:
        result = await db.execute(
            select(GLEntry)
            .where(and_(GLEntry.tenant_id == tenant_id, GLEntry.loan_id == loan_id))
            .order_by(GLEntry.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_entries_for_payment(db: AsyncSession, payment_id: int) -> List[GLEntry]:
        result = await db.execute(
            select(GLEntry).where(GLEntry.payment_id == payment_id).order_by(GLEntry.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def trial_balance(db: AsyncSession, tenant_id: str) -> Dict:
        """
        Verify ledger integrity for a tenant.

        Returns:
            Dict with per-account net balances, totals and an is_balanced flag
        """
        result = await db.execute(
            select(GLEntry.debit_acct, GLEntry.credit_acct, GLEntry.amount).where(
                GLEntry.tenant_id == tenant_id
            )
        )
        balances: Dict[int, Decimal] = {}
        total_debits = ZERO
        total_credits = ZERO
        errors = []
        for debit_acct, credit_acct, amount in result.all():
            amount = to_decimal(amount)
            if amount <= 0:
                errors.append(f"Non-positive GL amount {amount} ({debit_acct}/{credit_acct})")
            balances[debit_acct] = balances.get(debit_acct, ZERO) + amount
            balances[credit_acct] = balances.get(credit_acct, ZERO) - amount
            total_debits += amount
            total_credits += amount

        net = round_cents(sum(balances.values(), ZERO))
        if net != 0:
            errors.append(f"Ledger not balanced: net {net}")

        return {
            "is_balanced": not errors,
            "total_debits": str(round_cents(total_debits)),
            "total_credits": str(round_cents(total_credits)),
            "accounts": {acct: str(round_cents(bal)) for acct, bal in sorted(balances.items())},
            "errors": errors
        }
