# routers/loans_api.py
# Per-loan read endpoints - payments, suspense balance, statements, vendor bills, GL entries

from typing import List

from fastapi import APIRouter, Query
from sqlalchemy import select, and_

from ..deps import SessionDep, TenantDep
from ..models import Payment as PaymentModel, Statement as StatementModel, VendorBill as VendorBillModel
from ..ledger_service import LedgerService
from ..schemas import GLEntry, Payment, PaymentList, Statement, SuspenseBalance, VendorBill
from ..suspense_service import SuspenseLedger
from ..payment_utils import ZERO

router = APIRouter(
    prefix="/loans",
    tags=["loans"],
    responses={404: {"description": "Not found"}}
)


@router.get("/{loan_id}/payments", response_model=PaymentList)
async def list_loan_payments(
    loan_id: int,
    db: SessionDep,
    tenant_id: TenantDep,
    limit: int = Query(100, ge=1, le=1000)
):
    """Payments for a loan, newest first"""
    result = await db.execute(
        select(PaymentModel)
        .where(and_(PaymentModel.tenant_id == tenant_id, PaymentModel.loan_id == loan_id))
        .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
        .limit(limit)
    )
    payments = [Payment.model_validate(p) for p in result.scalars().all()]
    return PaymentList(loan_id=loan_id, payments=payments)


@router.get("/{loan_id}/suspense", response_model=SuspenseBalance)
async def get_loan_suspense(loan_id: int, db: SessionDep, tenant_id: TenantDep):
    """Unapplied funds held for a loan"""
    row = await SuspenseLedger.get_row(db, tenant_id, loan_id)
    if row is None:
        return SuspenseBalance(loan_id=loan_id, balance=ZERO)
    return SuspenseBalance(loan_id=loan_id, balance=row.balance, updated_at=row.updated_at)


@router.get("/{loan_id}/statements", response_model=List[Statement])
async def list_loan_statements(loan_id: int, db: SessionDep, tenant_id: TenantDep):
    result = await db.execute(
        select(StatementModel)
        .where(and_(StatementModel.tenant_id == tenant_id, StatementModel.loan_id == loan_id))
        .order_by(StatementModel.statement_date.desc())
    )
    return result.scalars().all()


@router.get("/{loan_id}/vendor-bills", response_model=List[VendorBill])
async def list_loan_vendor_bills(loan_id: int, db: SessionDep, tenant_id: TenantDep):
    result = await db.execute(
        select(VendorBillModel)
        .where(and_(VendorBillModel.tenant_id == tenant_id, VendorBillModel.loan_id == loan_id))
        .order_by(VendorBillModel.due_date, VendorBillModel.id)
    )
    return result.scalars().all()


@router.get("/{loan_id}/gl-entries", response_model=List[GLEntry])
async def list_loan_gl_entries(loan_id: int, db: SessionDep, tenant_id: TenantDep):
    """GL postings tied to a loan, in posting order"""
    return await LedgerService.get_entries_for_loan(db, tenant_id, loan_id)
