# escrow_service.py
# Escrow analysis: sub-account snapshot, cushion shortage and vendor bill estimates.

import calendar
import logging
import math
from datetime import date
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .models import EscrowSubAccount
from .payment_utils import ZERO, round_cents, to_decimal

log = logging.getLogger(__name__)

ESCROW_BUCKETS = ("TAX", "HOI", "FLOOD", "HOA")
MIN_BILL_AMOUNT = Decimal("50.00")


def shortage_collection(shortage: Decimal, min_pay: Decimal) -> Decimal:
    """Amount collected this cycle toward an escrow shortage."""
    if shortage <= 0:
        return ZERO
    monthly = Decimal(math.ceil(shortage / 12))
    return round_cents(max(to_decimal(min_pay), monthly))


def implied_vendor_due_date(as_of: date) -> date:
    """The 15th of the month after as_of."""
    year, month = (as_of.year + 1, 1) if as_of.month == 12 else (as_of.year, as_of.month + 1)
    return date(year, month, min(15, calendar.monthrange(year, month)[1]))


def estimate_bill_amount(monthly_accrual) -> Decimal:
    """Annualized bucket accrual, never below the minimum bill."""
    return max(MIN_BILL_AMOUNT, round_cents(to_decimal(monthly_accrual) * 12))


class EscrowAnalysisService:
    """Escrow position of a loan at a point in time"""

    @staticmethod
    async def get_escrow_status(
        db: AsyncSession,
        tenant_id: str,
        loan_id: int,
        cushion_months: Optional[int] = None,
        min_pay: Optional[Decimal] = None
    ) -> Dict:
        """
        Snapshot of the loan's escrow sub-accounts.

        Returns:
            {"buckets": {bucket: monthly accrual}, "balances": {bucket: balance},
             "balance", "cushion", "shortage", "shortageCollectThisCycle"} as Decimals
        """
        cushion_months = settings.ESCROW_CUSHION_MONTHS if cushion_months is None else cushion_months
        min_pay = settings.ESCROW_SHORTAGE_MIN_PAY if min_pay is None else min_pay

        result = await db.execute(
            select(EscrowSubAccount).where(
                and_(EscrowSubAccount.tenant_id == tenant_id, EscrowSubAccount.loan_id == loan_id)
            )
        )
        accruals: Dict[str, Decimal] = {}
        balances: Dict[str, Decimal] = {}
        for sub in result.scalars().all():
            accruals[sub.bucket] = round_cents(sub.monthly_accrual or 0)
            balances[sub.bucket] = round_cents(sub.balance or 0)

        balance = round_cents(sum(balances.values(), ZERO))
        total_accrual = sum((accruals.get(b, ZERO) for b in ESCROW_BUCKETS), ZERO)
        cushion = round_cents(Decimal(cushion_months) * total_accrual)
        shortage = max(ZERO, round_cents(cushion - balance))

        return {
            "buckets": accruals,
            "balances": balances,
            "balance": balance,
            "cushion": cushion,
            "shortage": shortage,
            "shortageCollectThisCycle": shortage_collection(shortage, min_pay)
        }
