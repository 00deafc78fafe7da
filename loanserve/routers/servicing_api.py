# routers/servicing_api.py
# Servicing batch endpoints - daily cycle trigger, GL balances

from typing import Optional

from fastapi import APIRouter, status

from ..deps import RendererDep, SessionDep, StorageDep, TenantDep
from ..ledger_service import LedgerService
from ..schemas import CycleTickRequest, GLAccountBalance
from ..servicing_cycle_service import ServicingCycleService
from .errors import to_http_exception

router = APIRouter(
    prefix="/servicing",
    tags=["servicing"]
)


@router.post("/cycle/tick", status_code=status.HTTP_202_ACCEPTED)
async def run_cycle_tick(
    db: SessionDep,
    tenant_id: TenantDep,
    storage: StorageDep,
    renderer: RendererDep,
    request: Optional[CycleTickRequest] = None
) -> dict:
    """
    Run the daily servicing cycle for the tenant.
    asOf defaults to today in SVC_BUSINESS_TZ; a second run for the same date is skipped.
    """
    try:
        as_of = request.as_of if request else None
        return await ServicingCycleService.run_daily_cycle(
            db, tenant_id, as_of=as_of, storage=storage, renderer=renderer
        )
    except Exception as e:
        raise to_http_exception(e)


# ==================== GENERAL LEDGER ====================

@router.get("/gl/accounts/{acct}/balance", response_model=GLAccountBalance)
async def get_gl_account_balance(acct: int, db: SessionDep, tenant_id: TenantDep):
    """Net balance of one GL account (debits - credits)"""
    balance = await LedgerService.get_account_balance(db, tenant_id, acct)
    return GLAccountBalance(acct=acct, balance=balance)


@router.get("/gl/trial-balance")
async def get_trial_balance(db: SessionDep, tenant_id: TenantDep) -> dict:
    return await LedgerService.trial_balance(db, tenant_id)
