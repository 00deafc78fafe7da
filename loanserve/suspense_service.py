# suspense_service.py
# Per-(tenant, loan) accumulator of funds received but not applied to the schedule.

import logging
from decimal import Decimal

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .database import dialect_insert
from .models import SuspenseBalance
from .payment_utils import ZERO, round_cents, to_decimal, utcnow

log = logging.getLogger(__name__)


class SuspenseLedger:
    """Suspense balances. Increments only; there is no application path out of suspense."""

    @staticmethod
    async def increment(db: AsyncSession, tenant_id: str, loan_id: int, amount: Decimal) -> None:
        """
        Add amount to the loan's suspense balance in a single statement.

        The row is created on first use; concurrent increments never lose an
        update because the addition happens inside the upsert.
        """
        amount = round_cents(amount)
        now = utcnow()
        insert = dialect_insert(db)
        stmt = insert(SuspenseBalance).values(
            tenant_id=tenant_id,
            loan_id=loan_id,
            balance=amount,
            updated_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[SuspenseBalance.tenant_id, SuspenseBalance.loan_id],
            set_={
                "balance": SuspenseBalance.balance + stmt.excluded.balance,
                "updated_at": now,
            }
        )
        await db.execute(stmt)
        log.debug(f"Suspense +{amount} for loan {loan_id} (tenant {tenant_id})")

    @staticmethod
    async def get_balance(db: AsyncSession, tenant_id: str, loan_id: int) -> Decimal:
        result = await db.execute(
            select(SuspenseBalance.balance).where(
                and_(SuspenseBalance.tenant_id == tenant_id, SuspenseBalance.loan_id == loan_id)
            )
        )
        balance = result.scalar()
        return round_cents(to_decimal(balance)) if balance is not None else ZERO

    @staticmethod
    async def get_row(db: AsyncSession, tenant_id: str, loan_id: int):
        result = await db.execute(
            select(SuspenseBalance).where(
                and_(SuspenseBalance.tenant_id == tenant_id, SuspenseBalance.loan_id == loan_id)
            )
        )
        return result.scalars().first()
