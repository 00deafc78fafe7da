"""
Daily Servicing Cycle
=====================

Runs once per (tenant, business date):
- delinquency bucket for every Active account
- late fee once grace has passed, at most one per installment
- statement on the installment due date
- escrow vendor bills inside the billing horizon, with disbursements when funded

The svc_cycle_runs unique constraint on (tenant_id, as_of_date) makes the
run guard atomic; a losing concurrent insert is reported as skipped.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import policy
from .audit_service import AuditService
from .config import settings
from .escrow_service import (
    ESCROW_BUCKETS, EscrowAnalysisService, estimate_bill_amount, implied_vendor_due_date
)
from .ledger_service import LedgerService
from .models import (
    CycleRun, Disbursement, ServicingAccount, ServicingTransaction, Statement, Vendor,
    VendorBill
)
from .payment_utils import business_today, round_cents, utcnow
from .posting_service import PostingService
from .statement_service import ArtifactRenderer, get_renderer
from .storage_service import ObjectStorage, get_object_storage, statement_key

log = logging.getLogger(__name__)


class ServicingCycleService:
    """Daily batch job over a tenant's servicing accounts"""

    @staticmethod
    async def run_daily_cycle(
        db: AsyncSession,
        tenant_id: str,
        as_of: Optional[date] = None,
        storage: Optional[ObjectStorage] = None,
        renderer: Optional[ArtifactRenderer] = None
    ) -> Dict:
        """
        Run the cycle for tenant_id on as_of (default: today in SVC_BUSINESS_TZ).

        Returns:
            {"ok": True, "skipped": True} when a run already exists, else
            {"ok": True, "asOf", "issued", "lateFees", "billsQueued", "disbursementsScheduled", ...}

        Raises:
            Any error from an account; the run is recorded as failed first
        """
        as_of = as_of or business_today(settings.SVC_BUSINESS_TZ)
        storage = storage or get_object_storage()
        renderer = renderer or get_renderer()

        existing = await db.execute(
            select(CycleRun.id).where(and_(CycleRun.tenant_id == tenant_id, CycleRun.as_of_date == as_of))
        )
        if existing.scalar() is not None:
            log.info(f"Daily cycle for {tenant_id} on {as_of} already ran; skipping")
            return {"ok": True, "skipped": True, "asOf": as_of.isoformat()}

        run = CycleRun(tenant_id=tenant_id, as_of_date=as_of, status="started")
        db.add(run)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            log.info(f"Daily cycle for {tenant_id} on {as_of} started concurrently; skipping")
            return {"ok": True, "skipped": True, "asOf": as_of.isoformat()}
        run_id = run.id

        metrics = {
            "accounts": 0,
            "issued": 0,
            "lateFees": 0,
            "billsQueued": 0,
            "disbursementsScheduled": 0,
            "delinquency": {},
        }
        buckets = settings.delinquency_buckets

        accounts_result = await db.execute(
            select(ServicingAccount.id, ServicingAccount.loan_id)
            .where(and_(ServicingAccount.tenant_id == tenant_id, ServicingAccount.state == "Active"))
            .order_by(ServicingAccount.loan_id)
        )
        accounts = accounts_result.all()

        current_loan = None
        try:
            for account_id, loan_id in accounts:
                current_loan = loan_id
                account = await db.get(ServicingAccount, account_id)
                await ServicingCycleService._process_account(
                    db, tenant_id, account, as_of, buckets, metrics, storage, renderer
                )
                await db.commit()
                metrics["accounts"] += 1
        except Exception as e:
            await db.rollback()
            log.exception(f"Daily cycle for {tenant_id} on {as_of} failed at loan {current_loan}")
            await ServicingCycleService._finish_run(
                db, run_id, "failed", {**metrics, "error": str(e), "loanId": current_loan}
            )
            raise

        await ServicingCycleService._finish_run(db, run_id, "completed", metrics)
        log.info(
            f"Daily cycle {tenant_id} {as_of}: {metrics['accounts']} accounts, {metrics['issued']} statements, "
            f"{metrics['lateFees']} late fees, {metrics['billsQueued']} bills"
        )
        await AuditService.log_servicing_action(
            action="cycle",
            entity_type="cycle_run",
            entity_id=run_id,
            tenant_id=tenant_id,
            details={"asOf": as_of.isoformat(), **metrics}
        )
        return {"ok": True, "asOf": as_of.isoformat(), **metrics}

    @staticmethod
    async def _finish_run(db: AsyncSession, run_id: int, status: str, metrics: Dict) -> None:
        run = await db.get(CycleRun, run_id)
        run.status = status
        run.metrics = metrics
        run.completed_at = utcnow()
        await db.commit()

    @staticmethod
    async def _process_account(db, tenant_id, account, as_of, buckets, metrics, storage, renderer) -> None:
        loan_id = account.loan_id
        installment = await PostingService.current_installment(db, loan_id)
        if installment is None:
            return

        dpd = policy.days_past_due(installment.due_date, installment.paid, as_of)
        bucket = policy.delinquency_bucket(dpd, buckets)
        label = policy.bucket_label(bucket, buckets)
        metrics["delinquency"][label] = metrics["delinquency"].get(label, 0) + 1

        grace = policy.grace_days(account.grace_days, settings.LATE_FEE_GRACE_DAYS)
        if dpd > grace:
            if await ServicingCycleService._assess_late_fee(db, tenant_id, account, installment):
                metrics["lateFees"] += 1

        escrow = await EscrowAnalysisService.get_escrow_status(db, tenant_id, loan_id)

        if installment.due_date == as_of:
            await ServicingCycleService._issue_statement(
                db, tenant_id, account, installment, as_of, dpd, bucket, escrow, storage, renderer
            )
            metrics["issued"] += 1

        queued, scheduled = await ServicingCycleService._queue_vendor_bills(db, tenant_id, loan_id, as_of, escrow)
        metrics["billsQueued"] += queued
        metrics["disbursementsScheduled"] += scheduled

    @staticmethod
    async def _assess_late_fee(db, tenant_id, account, installment) -> bool:
        existing = await db.execute(
            select(ServicingTransaction.id).where(and_(
                ServicingTransaction.loan_id == account.loan_id,
                ServicingTransaction.type == "FEE",
                ServicingTransaction.fee_code == "LATE",
                ServicingTransaction.installment_no == installment.installment_no
            ))
        )
        if existing.scalar() is not None:
            return False

        fee = policy.late_fee(account.pmt_principal_interest or 0, settings.LATE_FEE_PCT)
        if fee <= 0:
            return False

        db.add(ServicingTransaction(
            tenant_id=tenant_id,
            loan_id=account.loan_id,
            type="FEE",
            amount=fee,
            alloc_fees=fee,
            fee_code="LATE",
            installment_no=installment.installment_no,
            memo="Late fee after grace",
            ref={"installment_no": installment.installment_no, "due_date": installment.due_date.isoformat()}
        ))
        await LedgerService.record_entry(
            db,
            tenant_id=tenant_id,
            debit_acct=settings.GL_CASH_ACCT,
            credit_acct=settings.GL_LATE_FEE_INCOME_ACCT,
            amount=fee,
            memo="Late fee assessment",
            loan_id=account.loan_id
        )
        log.info(f"Late fee {fee} assessed on loan {account.loan_id} installment {installment.installment_no}")
        return True

    @staticmethod
    async def _issue_statement(db, tenant_id, account, installment, as_of, dpd, bucket, escrow, storage, renderer) -> None:
        loan_id = account.loan_id
        fees = await PostingService.accrued_fees(db, loan_id)
        due = {
            "principal": round_cents(installment.principal_due),
            "interest": round_cents(installment.interest_due),
            "escrow": round_cents(installment.escrow_due),
            "fees": fees,
        }
        total = round_cents(sum(due.values(), Decimal("0")))
        prior_balance = None
        if installment.principal_balance_after is not None:
            prior_balance = round_cents(installment.principal_balance_after + (installment.escrow_due or 0))

        summary = {
            "due": {k: str(v) for k, v in due.items()},
            "total": str(total),
            "delinquency": {"dpd": dpd, "bucket": bucket},
            "escrow": {
                "balance": str(escrow["balance"]),
                "shortage": str(escrow["shortage"]),
                "buckets": {k: str(v) for k, v in escrow["buckets"].items()},
            },
            "shortageCollectThisCycle": str(escrow["shortageCollectThisCycle"]),
        }
        body, digest = renderer.render_statement({
            "loanId": loan_id,
            "asOf": as_of.isoformat(),
            "installmentNo": installment.installment_no,
            "dueDate": installment.due_date.isoformat(),
            "priorBalance": str(prior_balance) if prior_balance is not None else None,
            "currentDue": {**summary["due"], "total": summary["total"]},
            "delinquency": summary["delinquency"],
            "escrow": summary["escrow"],
            "shortageCollectThisCycle": summary["shortageCollectThisCycle"],
        })
        uri = await storage.put_bytes(statement_key(tenant_id, loan_id, as_of.isoformat()), body, renderer.content_type)

        db.add(Statement(
            tenant_id=tenant_id,
            loan_id=loan_id,
            statement_date=as_of,
            cycle_label=as_of.strftime("%Y-%m"),
            file_uri=uri,
            file_sha256=digest,
            summary=summary
        ))
        await db.flush()

    @staticmethod
    async def _queue_vendor_bills(db, tenant_id, loan_id, as_of, escrow):
        """Returns (bills created, disbursements scheduled)."""
        vendors_result = await db.execute(
            select(Vendor)
            .where(and_(Vendor.loan_id == loan_id, Vendor.type.in_(ESCROW_BUCKETS)))
            .order_by(Vendor.id)
        )
        horizon = as_of + timedelta(days=settings.ESCROW_BILL_HORIZON_DAYS)
        available = escrow["balance"]
        queued = 0
        scheduled = 0

        for vendor in vendors_result.scalars().all():
            due_date = vendor.next_due_date or implied_vendor_due_date(as_of)
            if due_date < as_of or due_date > horizon:
                continue

            billed = await db.execute(
                select(VendorBill.id).where(and_(
                    VendorBill.loan_id == loan_id,
                    VendorBill.vendor_id == vendor.id,
                    VendorBill.due_date == due_date
                ))
            )
            if billed.scalar() is not None:
                continue

            amount = estimate_bill_amount(escrow["buckets"].get(vendor.type, 0))
            funded = available >= amount
            bill = VendorBill(
                tenant_id=tenant_id,
                loan_id=loan_id,
                vendor_id=vendor.id,
                bucket=vendor.type,
                due_date=due_date,
                amount=amount,
                status="Scheduled" if funded else "Queued"
            )
            db.add(bill)
            await db.flush()
            queued += 1

            if funded:
                db.add(Disbursement(
                    tenant_id=tenant_id,
                    loan_id=loan_id,
                    vendor_id=vendor.id,
                    bill_id=bill.id,
                    method=settings.DISB_DEFAULT_METHOD,
                    scheduled_date=due_date,
                    amount=amount,
                    status="Requested",
                    meta={"vendor": vendor.name}
                ))
                available = round_cents(available - amount)
                scheduled += 1

        return queued, scheduled
