"""
Payment Ingestion Service
Manual entry, lockbox CSV files, ACH processor webhooks and NSF/chargeback notices
"""

import csv
import io
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .allocation_service import AllocationEngine
from .audit_service import AuditService
from .config import settings
from .exceptions import LockboxFormatError, OriginalPaymentNotFound, ValidationError
from .models import Loan, Payment, PaymentBatch, PaymentReceipt
from .payment_utils import business_today, round_cents, sha256_hex, to_decimal, utcnow
from .posting_service import PostingService
from .statement_service import ArtifactRenderer, get_renderer
from .storage_service import ObjectStorage, get_object_storage, receipt_key

log = logging.getLogger(__name__)

CHANNELS = ("ACH", "CARD", "LOCKBOX", "MANUAL")


def parse_amount(value: Any) -> Decimal:
    try:
        return round_cents(to_decimal(value))
    except ValueError:
        raise ValidationError(f"Invalid amount: {value!r}")


def _ach_reference(data: Dict[str, Any]) -> Optional[str]:
    # completion and return events must resolve to the same key
    return data.get("transaction_id") or data.get("reference")


class PaymentIngestionService:
    """Entry points that create payments and hand them to the posting engine"""

    @staticmethod
    async def ingest(
        db: AsyncSession,
        tenant_id: str,
        amount: Any,
        channel: str,
        loan_number: Optional[str] = None,
        loan_id: Optional[int] = None,
        reference: Optional[str] = None,
        memo: Optional[str] = None,
        batch_id: Optional[int] = None,
        storage: Optional[ObjectStorage] = None,
        renderer: Optional[ArtifactRenderer] = None,
        allocation_engine: Optional[AllocationEngine] = None
    ) -> Dict:
        """
        Record a Received payment, then post it when it meets the minimum.

        The payment row is committed before posting starts, so a posting
        failure never loses the receipt of funds.

        Returns:
            {"paymentId", "status", ...posting outcome}
        """
        amount = parse_amount(amount)
        if amount <= 0:
            raise ValidationError("Amount must be positive")

        channel = (channel or "").strip().upper()
        if channel not in CHANNELS:
            raise ValidationError(f"Unknown channel: {channel or '(blank)'}")

        loan_number = (loan_number or "").strip() or None
        if loan_number is None and loan_id is None:
            raise ValidationError("Loan number or loan id is required")

        payment = Payment(
            tenant_id=tenant_id,
            batch_id=batch_id,
            loan_id=loan_id,
            loan_number=loan_number,
            amount=amount,
            channel=channel,
            reference=(reference or "").strip() or None,
            memo=memo,
            status="Received"
        )
        db.add(payment)
        await db.commit()
        payment_id = payment.id
        log.info(f"Payment {payment_id} received: {amount} via {channel} for loan {loan_number or loan_id}")

        await AuditService.log_payment_action(
            action="ingest",
            payment_id=payment_id,
            tenant_id=tenant_id,
            details={"amount": str(amount), "channel": channel, "batchId": batch_id}
        )

        if amount < round_cents(settings.PAYMENT_MIN_TO_POST):
            return {"paymentId": payment_id, "status": "Received"}

        outcome = await PostingService.post_payment(db, tenant_id, payment_id, allocation_engine)

        if outcome["status"] == "Posted":
            try:
                receipt = await PaymentIngestionService.issue_receipt(
                    db, tenant_id, payment_id,
                    storage=storage or get_object_storage(),
                    renderer=renderer or get_renderer()
                )
                outcome["receiptUri"] = receipt.file_uri
            except Exception as e:
                await db.rollback()
                log.error(f"Receipt for payment {payment_id} failed: {e}")

        return {"paymentId": payment_id, **outcome}

    @staticmethod
    async def issue_receipt(
        db: AsyncSession,
        tenant_id: str,
        payment_id: int,
        storage: ObjectStorage,
        renderer: ArtifactRenderer
    ) -> PaymentReceipt:
        """Render, store and link a receipt for a posted payment."""
        result = await db.execute(
            select(Payment).where(and_(Payment.id == payment_id, Payment.tenant_id == tenant_id))
        )
        payment = result.scalars().first()
        if payment is None or payment.status != "Posted":
            raise ValidationError(f"Payment {payment_id} is not posted")

        body, digest = renderer.render_receipt({
            "paymentId": payment.id,
            "loanId": payment.loan_id,
            "loanNumber": payment.loan_number,
            "amount": str(round_cents(payment.amount)),
            "channel": payment.channel,
            "reference": payment.reference,
            "receivedAt": payment.created_at,
            "allocation": payment.allocation,
            "transactionId": payment.posted_txn_id,
        })
        uri = await storage.put_bytes(
            receipt_key(tenant_id, payment.loan_id, payment.id), body, renderer.content_type
        )

        receipt = PaymentReceipt(
            tenant_id=tenant_id,
            payment_id=payment.id,
            file_uri=uri,
            file_sha256=digest
        )
        db.add(receipt)
        await db.flush()
        payment.receipt_id = receipt.id
        await db.commit()
        return receipt

    # ==================== LOCKBOX ====================

    @staticmethod
    async def ingest_lockbox_csv(
        db: AsyncSession,
        tenant_id: str,
        content: Union[str, bytes],
        file_name: str,
        storage: Optional[ObjectStorage] = None,
        renderer: Optional[ArtifactRenderer] = None,
        allocation_engine: Optional[AllocationEngine] = None
    ) -> Dict:
        """
        Ingest a lockbox CSV file as one batch.

        Each row is ingested on its own; a bad row is reported and the rest
        continue. The batch is Posted only when every row succeeded.

        Raises:
            LockboxFormatError: Header does not match LOCKBOX_CSV_HEADER
        """
        raw = content if isinstance(content, bytes) else content.encode("utf-8")
        text = raw.decode("utf-8-sig")
        lines = text.strip().splitlines()

        expected_header = settings.LOCKBOX_CSV_HEADER
        header = lines[0].strip() if lines else ""
        if header != expected_header:
            raise LockboxFormatError(f"Invalid CSV header. Expected: {expected_header}")

        batch = PaymentBatch(
            tenant_id=tenant_id,
            channel="LOCKBOX",
            batch_date=business_today(settings.SVC_BUSINESS_TZ),
            file_uri=file_name,
            file_sha256=sha256_hex(raw),
            status="Received"
        )
        db.add(batch)
        await db.commit()
        batch_id = batch.id

        results: List[Dict] = []
        reader = csv.reader(io.StringIO("\n".join(lines[1:])))
        for row in reader:
            line_no = reader.line_num + 1
            if not any(cell.strip() for cell in row):
                continue

            try:
                payment_date, loan_number, amount, reference, channel = (row + [""] * 5)[:5]
                if not loan_number.strip():
                    raise ValidationError("Missing loan number")
                result = await PaymentIngestionService.ingest(
                    db,
                    tenant_id=tenant_id,
                    amount=amount,
                    channel=channel.strip() or "LOCKBOX",
                    loan_number=loan_number,
                    reference=reference,
                    memo=f"Lockbox payment dated {payment_date.strip()}" if payment_date.strip() else None,
                    batch_id=batch_id,
                    storage=storage,
                    renderer=renderer,
                    allocation_engine=allocation_engine
                )
                results.append({
                    "line": line_no,
                    "success": True,
                    "paymentId": result["paymentId"],
                    "status": result["status"]
                })
            except Exception as e:
                await db.rollback()
                log.warning(f"Lockbox batch {batch_id} line {line_no} failed: {e}")
                results.append({"line": line_no, "success": False, "error": str(e)})

        success_count = sum(1 for r in results if r["success"])
        status = "Posted" if success_count == len(results) else "Failed"

        batch_result = await db.execute(select(PaymentBatch).where(PaymentBatch.id == batch_id))
        batch = batch_result.scalars().one()
        batch.status = status
        batch.posted_at = utcnow()
        await db.commit()

        log.info(f"Lockbox batch {batch_id} ({file_name}): {success_count}/{len(results)} rows, {status}")
        await AuditService.log_servicing_action(
            action="import",
            entity_type="batch",
            entity_id=batch_id,
            tenant_id=tenant_id,
            details={"fileName": file_name, "successCount": success_count, "totalCount": len(results), "status": status}
        )

        return {
            "batchId": batch_id,
            "status": status,
            "results": results,
            "successCount": success_count,
            "totalCount": len(results)
        }

    # ==================== ACH WEBHOOK ====================

    @staticmethod
    async def process_ach_webhook(
        db: AsyncSession,
        tenant_id: str,
        data: Dict[str, Any],
        storage: Optional[ObjectStorage] = None,
        renderer: Optional[ArtifactRenderer] = None
    ) -> Dict:
        """
        Dispatch a verified ACH processor event.

        completed -> ingest; failed/returned -> NSF reversal; anything else is ignored.
        """
        status = str(data.get("status") or "").lower()

        if status == "completed":
            return await PaymentIngestionService.ingest(
                db,
                tenant_id=tenant_id,
                amount=data.get("amount"),
                channel="ACH",
                loan_number=data.get("loan_number"),
                reference=_ach_reference(data),
                storage=storage,
                renderer=renderer
            )

        if status in ("failed", "returned"):
            return await PaymentIngestionService.process_nsf_chargeback(
                db,
                tenant_id=tenant_id,
                loan_number=data.get("loan_number"),
                amount=data.get("amount"),
                reference=_ach_reference(data)
            )

        log.info(f"ACH webhook ignored: status {status or '(none)'}")
        return {"status": "ignored", "reason": f"Unhandled ACH status: {status}"}

    # ==================== NSF / CHARGEBACK ====================

    @staticmethod
    async def process_nsf_chargeback(
        db: AsyncSession,
        tenant_id: str,
        loan_number: Optional[str],
        amount: Any,
        reference: Optional[str],
        loan_id: Optional[int] = None
    ) -> Dict:
        """
        Reverse a posted payment after an NSF or chargeback notice.

        Creates a negative reversal payment and, when NSF_FEE > 0, an NSF fee
        payment; both stay Received. The original becomes Reversed. All three
        writes commit together.

        Raises:
            OriginalPaymentNotFound: No posted payment matches the notice
        """
        amount = parse_amount(amount)
        if not reference:
            raise ValidationError("Reference is required for NSF/chargeback")
        if not loan_number and loan_id is None:
            raise ValidationError("Loan number or loan id is required")

        loan_filter = Payment.loan_number == loan_number
        if loan_id is not None:
            loan_filter = Payment.loan_id == loan_id
        elif loan_number:
            loan_result = await db.execute(
                select(Loan.id).where(and_(Loan.tenant_id == tenant_id, Loan.loan_number == loan_number))
            )
            resolved_id = loan_result.scalar()
            if resolved_id is not None:
                loan_filter = (Payment.loan_number == loan_number) | (Payment.loan_id == resolved_id)

        result = await db.execute(
            select(Payment)
            .where(and_(
                Payment.tenant_id == tenant_id,
                loan_filter,
                Payment.amount == amount,
                Payment.reference == reference,
                Payment.status == "Posted"
            ))
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .limit(1)
            .with_for_update()
        )
        original = result.scalars().first()
        if original is None:
            await db.rollback()
            raise OriginalPaymentNotFound("Original payment not found for NSF/chargeback")

        original_id = original.id

        try:
            reversal = Payment(
                tenant_id=tenant_id,
                loan_id=original.loan_id,
                loan_number=original.loan_number,
                amount=-amount,
                channel=original.channel,
                reference=f"NSF-REV-{reference}",
                memo="NSF/Chargeback reversal",
                status="Received"
            )
            db.add(reversal)

            fee_payment = None
            nsf_fee = round_cents(settings.NSF_FEE)
            if nsf_fee > 0:
                fee_payment = Payment(
                    tenant_id=tenant_id,
                    loan_id=original.loan_id,
                    loan_number=original.loan_number,
                    amount=nsf_fee,
                    channel="MANUAL",
                    reference=f"NSF-FEE-{reference}",
                    memo="NSF fee assessment",
                    status="Received"
                )
                db.add(fee_payment)

            original.status = "Reversed"
            original.updated_at = utcnow()
            await db.flush()
            outcome = {
                "status": "Reversed",
                "originalPaymentId": original_id,
                "reversalId": reversal.id,
                "nsfFeePaymentId": fee_payment.id if fee_payment else None,
                "nsfFee": str(nsf_fee)
            }
            await db.commit()
        except Exception:
            await db.rollback()
            log.exception(f"NSF reversal of payment {original_id} failed; rolled back")
            raise

        log.warning(f"Payment {original_id} reversed (NSF/chargeback {reference})")
        await AuditService.log_payment_action(
            action="reverse",
            payment_id=original_id,
            tenant_id=tenant_id,
            details=outcome,
            reason="NSF/chargeback"
        )
        return outcome
