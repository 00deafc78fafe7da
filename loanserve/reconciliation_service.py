"""
Bank Reconciliation Service
===========================

Imports a bank statement, stores the source file, and matches every bank
transaction to at most one posted payment.

MATCH RULE:
- payment is Posted, same tenant, not already matched
- |payment amount - bank amount| < 0.01
- payment created within +/- RECON_MATCH_WINDOW_DAYS of now
- best candidate: smallest amount difference, then closest to now

Unmatched transactions get a Manual placeholder flagged for review.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .audit_service import AuditService
from .config import settings
from .exceptions import MatchNotFound, PaymentNotFound, StatementNotFound, ValidationError
from .models import BankStatement, BankTransaction, Payment, ReconciliationMatch
from .payment_utils import CENT, ZERO, round_cents, sha256_hex, to_decimal, utcnow
from .storage_service import ObjectStorage, bank_statement_key, get_object_storage

log = logging.getLogger(__name__)


class ReconciliationService:
    """Bank statement import, auto-matching and manual matching"""

    @staticmethod
    async def import_statement(
        db: AsyncSession,
        tenant_id: str,
        stmt_date: date,
        opening_balance: Any,
        closing_balance: Any,
        transactions: List[Dict[str, Any]],
        file_name: str,
        file_content: bytes,
        storage: Optional[ObjectStorage] = None,
        now: Optional[datetime] = None
    ) -> Dict:
        """
        Store the statement file and auto-match its transactions.

        All statement, transaction and match rows commit together.
        """
        storage = storage or get_object_storage()
        now = now or utcnow()

        try:
            opening = round_cents(to_decimal(opening_balance))
            closing = round_cents(to_decimal(closing_balance))
            parsed = [
                {
                    "amount": round_cents(to_decimal(txn.get("amount"))),
                    "reference": txn.get("reference"),
                    "description": txn.get("description"),
                }
                for txn in transactions
            ]
        except (ValueError, AttributeError) as e:
            raise ValidationError(f"Invalid bank statement data: {e}")

        digest = sha256_hex(file_content)
        uri = await storage.put_bytes(
            bank_statement_key(tenant_id, stmt_date.isoformat(), file_name),
            file_content,
            "application/octet-stream"
        )

        try:
            statement = BankStatement(
                tenant_id=tenant_id,
                stmt_date=stmt_date,
                opening_balance=opening,
                closing_balance=closing,
                file_uri=uri,
                file_sha256=digest
            )
            db.add(statement)
            await db.flush()

            matches = []
            for txn in parsed:
                matches.append(await ReconciliationService._match_transaction(db, tenant_id, statement.id, txn, now))

            bank_id = statement.id
            await db.commit()
        except Exception:
            await db.rollback()
            log.exception(f"Bank statement import for {tenant_id} {stmt_date} failed; rolled back")
            raise

        matched_count = sum(1 for m in matches if m["matched"])
        result = {
            "bankId": bank_id,
            "fileUri": uri,
            "totalTransactions": len(matches),
            "matchedCount": matched_count,
            "unmatchedCount": len(matches) - matched_count,
            "reconciliationComplete": matched_count == len(matches),
            "matches": matches
        }
        log.info(f"Bank statement {bank_id} ({stmt_date}): {matched_count}/{len(matches)} auto-matched")
        await AuditService.log_servicing_action(
            action="import",
            entity_type="bank_statement",
            entity_id=bank_id,
            tenant_id=tenant_id,
            details={k: v for k, v in result.items() if k != "matches"}
        )
        return result

    @staticmethod
    async def find_candidate(
        db: AsyncSession,
        tenant_id: str,
        amount: Decimal,
        now: datetime
    ) -> Optional[Payment]:
        """Best unmatched posted payment for a bank amount, or None."""
        window = timedelta(days=settings.RECON_MATCH_WINDOW_DAYS)
        already_matched = select(ReconciliationMatch.payment_id).where(
            ReconciliationMatch.payment_id.isnot(None)
        )
        result = await db.execute(
            select(Payment).where(and_(
                Payment.tenant_id == tenant_id,
                Payment.status == "Posted",
                Payment.amount > amount - CENT,
                Payment.amount < amount + CENT,
                Payment.created_at >= now - window,
                Payment.created_at <= now + window,
                Payment.id.notin_(already_matched)
            ))
        )
        candidates = [
            p for p in result.scalars().all()
            if abs(round_cents(p.amount) - amount) < CENT
        ]
        if not candidates:
            return None
        return min(
            candidates,
            key=lambda p: (abs(round_cents(p.amount) - amount), abs((p.created_at - now).total_seconds()), p.id)
        )

    @staticmethod
    async def _match_transaction(db, tenant_id, bank_id, txn, now) -> Dict:
        bank_txn = BankTransaction(
            tenant_id=tenant_id,
            bank_id=bank_id,
            amount=txn["amount"],
            reference=txn["reference"],
            description=txn["description"]
        )
        db.add(bank_txn)
        await db.flush()

        payment = await ReconciliationService.find_candidate(db, tenant_id, txn["amount"], now)
        match = ReconciliationMatch(
            tenant_id=tenant_id,
            bank_id=bank_id,
            bank_txn_id=bank_txn.id,
            payment_id=payment.id if payment else None,
            amount=txn["amount"],
            match_type="Auto" if payment else "Manual",
            requires_review=payment is None,
            matched_at=now if payment else None
        )
        db.add(match)
        await db.flush()

        entry = {
            "matchId": match.id,
            "bankTxnId": bank_txn.id,
            "matched": payment is not None,
            "matchType": match.match_type,
            "bankAmount": str(txn["amount"]),
            "reference": txn["reference"],
        }
        if payment is not None:
            entry["paymentId"] = payment.id
            entry["paymentAmount"] = str(round_cents(payment.amount))
        else:
            entry["requiresManualReview"] = True
        return entry

    @staticmethod
    async def get_reconciliation_report(db: AsyncSession, tenant_id: str, stmt_date: date) -> Dict:
        """
        Summary of the latest statement imported for stmt_date.

        Raises:
            StatementNotFound: No statement for that date
        """
        stmt_result = await db.execute(
            select(BankStatement)
            .where(and_(BankStatement.tenant_id == tenant_id, BankStatement.stmt_date == stmt_date))
            .order_by(BankStatement.id.desc())
            .limit(1)
        )
        statement = stmt_result.scalars().first()
        if statement is None:
            raise StatementNotFound(f"Bank statement not found for {stmt_date}")

        rows = await db.execute(
            select(ReconciliationMatch, BankTransaction, Payment)
            .join(BankTransaction, ReconciliationMatch.bank_txn_id == BankTransaction.id)
            .outerjoin(Payment, ReconciliationMatch.payment_id == Payment.id)
            .where(and_(ReconciliationMatch.tenant_id == tenant_id, ReconciliationMatch.bank_id == statement.id))
            .order_by(ReconciliationMatch.amount.desc(), ReconciliationMatch.id)
        )

        matches = []
        total_amount = ZERO
        matched_amount = ZERO
        matched_count = 0
        for match, bank_txn, payment in rows.all():
            amount = round_cents(match.amount)
            total_amount += amount
            if match.payment_id is not None:
                matched_count += 1
                matched_amount += amount
            matches.append({
                "matchId": match.id,
                "bankTxnId": bank_txn.id,
                "amount": str(amount),
                "reference": bank_txn.reference,
                "description": bank_txn.description,
                "matchType": match.match_type,
                "requiresReview": match.requires_review,
                "paymentId": match.payment_id,
                "paymentReference": payment.reference if payment else None,
                "paymentDate": payment.created_at.isoformat() if payment else None,
            })

        total_count = len(matches)
        return {
            "statement": {
                "bankId": statement.id,
                "date": statement.stmt_date.isoformat(),
                "openingBalance": str(round_cents(statement.opening_balance)),
                "closingBalance": str(round_cents(statement.closing_balance)),
                "fileUri": statement.file_uri,
                "fileSha256": statement.file_sha256
            },
            "reconciliation": {
                "totalTransactions": total_count,
                "matchedTransactions": matched_count,
                "unmatchedTransactions": total_count - matched_count,
                "totalAmount": str(round_cents(total_amount)),
                "matchedAmount": str(round_cents(matched_amount)),
                "unmatchedAmount": str(round_cents(total_amount - matched_amount)),
                "reconciliationComplete": matched_count == total_count
            },
            "matches": matches
        }

    @staticmethod
    async def manual_match(db: AsyncSession, tenant_id: str, match_id: int, payment_id: int) -> Dict:
        """
        Bind a payment to a match row by hand.

        Raises:
            MatchNotFound: Unknown match id for the tenant
            PaymentNotFound: Unknown payment id for the tenant
            ValidationError: Payment already matched to another bank transaction
        """
        match_result = await db.execute(
            select(ReconciliationMatch)
            .where(and_(ReconciliationMatch.id == match_id, ReconciliationMatch.tenant_id == tenant_id))
            .with_for_update()
        )
        match = match_result.scalars().first()
        if match is None:
            raise MatchNotFound(f"Reconciliation match {match_id} not found")

        payment_result = await db.execute(
            select(Payment).where(and_(Payment.id == payment_id, Payment.tenant_id == tenant_id))
        )
        payment = payment_result.scalars().first()
        if payment is None:
            raise PaymentNotFound(f"Payment {payment_id} not found")

        other = await db.execute(
            select(ReconciliationMatch.id).where(and_(
                ReconciliationMatch.payment_id == payment_id,
                ReconciliationMatch.id != match_id
            ))
        )
        if other.scalar() is not None:
            await db.rollback()
            raise ValidationError(f"Payment {payment_id} is already matched")

        previous = match.payment_id
        match.payment_id = payment_id
        match.match_type = "Manual"
        match.requires_review = False
        match.matched_at = utcnow()
        await db.commit()

        log.info(f"Reconciliation match {match_id} manually bound to payment {payment_id}")
        await AuditService.log_servicing_action(
            action="match",
            entity_type="recon_match",
            entity_id=match_id,
            tenant_id=tenant_id,
            details={"paymentId": payment_id, "previousPaymentId": previous}
        )
        return {"success": True, "matchId": match_id, "paymentId": payment_id, "matchType": "Manual"}
