# routers/reconciliation_api.py
# Bank reconciliation API endpoints - statement import, report, manual match

import json
from datetime import date
from typing import List

from fastapi import APIRouter, File, Form, UploadFile, status
from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from ..deps import SessionDep, StorageDep, TenantDep
from ..exceptions import ValidationError
from ..reconciliation_service import ReconciliationService
from ..schemas import BankTransactionIn, ManualMatchRequest
from .errors import to_http_exception

router = APIRouter(
    prefix="/reconciliation",
    tags=["reconciliation"],
    responses={404: {"description": "Not found"}}
)

_transactions_adapter = TypeAdapter(List[BankTransactionIn])


@router.post("/bank-statement", status_code=status.HTTP_201_CREATED)
async def import_bank_statement(
    db: SessionDep,
    tenant_id: TenantDep,
    storage: StorageDep,
    statement_file: UploadFile = File(..., alias="statementFile"),
    stmt_date: date = Form(..., alias="stmtDate"),
    opening_balance: str = Form(..., alias="openingBalance"),
    closing_balance: str = Form(..., alias="closingBalance"),
    transactions: str = Form("[]")
) -> dict:
    """
    Import a bank statement and auto-match its transactions.
    transactions: JSON array of {amount, reference, description}
    """
    try:
        try:
            parsed = _transactions_adapter.validate_python(json.loads(transactions))
        except (ValueError, PydanticValidationError) as e:
            raise ValidationError(f"Invalid transactions: {e}")

        content = await statement_file.read()
        result = await ReconciliationService.import_statement(
            db,
            tenant_id=tenant_id,
            stmt_date=stmt_date,
            opening_balance=opening_balance,
            closing_balance=closing_balance,
            transactions=[t.model_dump() for t in parsed],
            file_name=statement_file.filename or "statement",
            file_content=content,
            storage=storage
        )
        return {"success": True, **result}
    except Exception as e:
        raise to_http_exception(e)


@router.post("/match")
async def manual_match(request: ManualMatchRequest, db: SessionDep, tenant_id: TenantDep) -> dict:
    """Bind a bank transaction match row to a payment by hand"""
    try:
        return await ReconciliationService.manual_match(db, tenant_id, request.match_id, request.payment_id)
    except Exception as e:
        raise to_http_exception(e)


@router.get("/{stmt_date}")
async def get_reconciliation_report(stmt_date: date, db: SessionDep, tenant_id: TenantDep) -> dict:
    """Reconciliation summary for the statement dated stmt_date"""
    try:
        return await ReconciliationService.get_reconciliation_report(db, tenant_id, stmt_date)
    except Exception as e:
        raise to_http_exception(e)
