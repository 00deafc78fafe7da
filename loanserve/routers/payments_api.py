# routers/payments_api.py
# Payment ingestion API endpoints - manual entry, lockbox files, ACH webhooks, posting

import json
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, File, Header, HTTPException, Request, UploadFile, status
from sqlalchemy import select, and_

from ..deps import RendererDep, SessionDep, StorageDep, TenantDep, WebhookVerifierDep
from ..ingestion_service import PaymentIngestionService
from ..models import Payment as PaymentModel
from ..posting_service import PostingService
from ..schemas import ManualPaymentRequest, Payment
from .errors import to_http_exception

log = logging.getLogger(__name__)

router = APIRouter(
    prefix="/payments",
    tags=["payments"],
    responses={404: {"description": "Not found"}}
)


# ==================== INGESTION ====================

@router.post("/manual", status_code=status.HTTP_201_CREATED)
async def create_manual_payment(
    request: ManualPaymentRequest,
    db: SessionDep,
    tenant_id: TenantDep,
    storage: StorageDep,
    renderer: RendererDep
) -> dict:
    """
    Record a payment keyed in by an operator.
    Amounts at or above PAYMENT_MIN_TO_POST are posted immediately.
    """
    try:
        result = await PaymentIngestionService.ingest(
            db,
            tenant_id=tenant_id,
            amount=request.amount,
            channel=request.channel,
            loan_number=request.loan_number,
            loan_id=request.loan_id,
            reference=request.reference,
            memo=request.memo,
            storage=storage,
            renderer=renderer
        )
        return {
            "success": True,
            "paymentId": result["paymentId"],
            "status": result["status"],
            "message": f"Payment {result['status'].lower()}",
            "result": result
        }
    except Exception as e:
        raise to_http_exception(e)


@router.post("/lockbox", status_code=status.HTTP_201_CREATED)
async def upload_lockbox_file(
    db: SessionDep,
    tenant_id: TenantDep,
    storage: StorageDep,
    renderer: RendererDep,
    csv_file: UploadFile = File(..., alias="csvFile")
) -> dict:
    """
    Ingest a lockbox CSV file.
    Header must be: PaymentDate,LoanNumber,Amount,Reference,Channel
    """
    try:
        content = await csv_file.read()
        result = await PaymentIngestionService.ingest_lockbox_csv(
            db,
            tenant_id=tenant_id,
            content=content,
            file_name=csv_file.filename or "lockbox.csv",
            storage=storage,
            renderer=renderer
        )
        return {"success": True, **result}
    except Exception as e:
        raise to_http_exception(e)


@router.post("/ach-webhook")
async def ach_webhook(
    request: Request,
    db: SessionDep,
    tenant_id: TenantDep,
    verifier: WebhookVerifierDep,
    storage: StorageDep,
    renderer: RendererDep,
    x_webhook_signature: Annotated[Optional[str], Header()] = None
) -> dict:
    """
    ACH processor callback. Body must be signed with ACH_WEBHOOK_SECRET.
    completed -> payment ingested; failed/returned -> NSF reversal.
    """
    try:
        body = await request.body()
        verifier.verify(body, x_webhook_signature)

        try:
            data = json.loads(body or b"{}")
        except ValueError:
            raise HTTPException(status_code=400, detail="Webhook body is not valid JSON")
        if not isinstance(data, dict):
            raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")

        result = await PaymentIngestionService.process_ach_webhook(
            db, tenant_id=tenant_id, data=data, storage=storage, renderer=renderer
        )
        return {"success": True, "result": result}
    except Exception as e:
        raise to_http_exception(e)


# ==================== PAYMENTS ====================

@router.get("/{payment_id}", response_model=Payment)
async def get_payment(payment_id: int, db: SessionDep, tenant_id: TenantDep):
    """Get a payment with its allocation and status"""
    result = await db.execute(
        select(PaymentModel).where(and_(PaymentModel.id == payment_id, PaymentModel.tenant_id == tenant_id))
    )
    payment = result.scalars().first()
    if payment is None:
        raise HTTPException(status_code=404, detail="Payment not found")
    return payment


@router.post("/{payment_id}/post")
async def post_payment(payment_id: int, db: SessionDep, tenant_id: TenantDep) -> dict:
    """Post (or re-post) a Received or Suspense payment"""
    try:
        result = await PostingService.post_payment(db, tenant_id, payment_id)
        return {"success": result["status"] in ("Posted", "Suspense"), "paymentId": payment_id, **result}
    except Exception as e:
        raise to_http_exception(e)
