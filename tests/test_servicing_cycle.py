import json
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from conftest import TENANT, seed_loan
from loanserve.escrow_service import (
    EscrowAnalysisService, estimate_bill_amount, implied_vendor_due_date, shortage_collection
)
from loanserve.ledger_service import LedgerService
from loanserve.models import (
    CycleRun, Disbursement, ServicingTransaction, Statement, VendorBill
)
from loanserve.servicing_cycle_service import ServicingCycleService

D = Decimal


async def late_fees(db):
    result = await db.execute(
        select(ServicingTransaction).where(ServicingTransaction.fee_code == "LATE")
    )
    return result.scalars().all()


async def test_late_fee_after_grace(db, storage, renderer) -> None:
    loan = await seed_loan(db)

    result = await ServicingCycleService.run_daily_cycle(
        db, TENANT, as_of=date(2026, 1, 20), storage=storage, renderer=renderer
    )

    assert result["ok"] is True
    assert result["lateFees"] == 1
    assert result["delinquency"] == {"0": 1}
    fees = await late_fees(db)
    assert len(fees) == 1
    assert (fees[0].amount, fees[0].alloc_fees, fees[0].installment_no) == (D("45.00"), D("45.00"), 1)

    gl = await LedgerService.get_entries_for_loan(db, TENANT, loan.id)
    assert [(e.debit_acct, e.credit_acct, e.amount) for e in gl] == [(1000, 4100, D("45.00"))]


async def test_no_late_fee_inside_grace(db, storage, renderer) -> None:
    await seed_loan(db)

    result = await ServicingCycleService.run_daily_cycle(
        db, TENANT, as_of=date(2026, 1, 16), storage=storage, renderer=renderer
    )

    assert result["lateFees"] == 0
    assert await late_fees(db) == []


async def test_account_grace_override(db, storage, renderer) -> None:
    await seed_loan(db, grace_days=20)

    result = await ServicingCycleService.run_daily_cycle(
        db, TENANT, as_of=date(2026, 1, 20), storage=storage, renderer=renderer
    )

    assert result["lateFees"] == 0


async def test_rerun_same_date_is_skipped(db, storage, renderer) -> None:
    await seed_loan(db)
    await ServicingCycleService.run_daily_cycle(db, TENANT, as_of=date(2026, 1, 20), storage=storage, renderer=renderer)

    result = await ServicingCycleService.run_daily_cycle(
        db, TENANT, as_of=date(2026, 1, 20), storage=storage, renderer=renderer
    )

    assert result == {"ok": True, "skipped": True, "asOf": "2026-01-20"}
    runs = (await db.execute(select(CycleRun))).scalars().all()
    assert len(runs) == 1
    assert runs[0].status == "completed"


async def test_late_fee_assessed_once_per_installment(db, storage, renderer) -> None:
    await seed_loan(db)
    await ServicingCycleService.run_daily_cycle(db, TENANT, as_of=date(2026, 1, 20), storage=storage, renderer=renderer)

    result = await ServicingCycleService.run_daily_cycle(
        db, TENANT, as_of=date(2026, 1, 21), storage=storage, renderer=renderer
    )

    assert result.get("skipped") is None
    assert result["lateFees"] == 0
    assert len(await late_fees(db)) == 1


async def test_delinquency_buckets_counted(db, storage, renderer) -> None:
    await seed_loan(db, loan_number="L-1", installments=((date(2026, 1, 1), "100.00", "800.00", "300.00"),))
    await seed_loan(db, loan_number="L-2", installments=((date(2025, 11, 1), "100.00", "800.00", "300.00"),))
    await seed_loan(db, loan_number="L-3", installments=((date(2025, 6, 1), "100.00", "800.00", "300.00"),))
    await seed_loan(db, loan_number="L-4", state="PaidOff")

    result = await ServicingCycleService.run_daily_cycle(
        db, TENANT, as_of=date(2026, 1, 10), storage=storage, renderer=renderer
    )

    assert result["accounts"] == 3
    assert result["delinquency"] == {"0": 1, "60": 1, "120+": 1}


async def test_statement_issued_on_due_date(db, storage, renderer) -> None:
    loan = await seed_loan(db, installments=((date(2026, 2, 1), "100.00", "800.00", "300.00"),))

    result = await ServicingCycleService.run_daily_cycle(
        db, TENANT, as_of=date(2026, 2, 1), storage=storage, renderer=renderer
    )

    assert result["issued"] == 1
    statement = (await db.execute(select(Statement))).scalars().one()
    assert statement.loan_id == loan.id
    assert statement.cycle_label == "2026-02"
    assert statement.summary["total"] == "1200.00"
    assert statement.file_uri.endswith(f"STMT_{loan.id}_2026-02-01.json")

    document = json.loads(await storage.get_bytes(statement.file_uri))
    assert document["type"] == "statement"
    assert document["header"] == "Test Servicer - Monthly Statement"
    assert document["data"]["currentDue"]["interest"] == "800.00"


async def test_no_statement_off_due_date(db, storage, renderer) -> None:
    await seed_loan(db, installments=((date(2026, 2, 1), "100.00", "800.00", "300.00"),))

    result = await ServicingCycleService.run_daily_cycle(
        db, TENANT, as_of=date(2026, 1, 31), storage=storage, renderer=renderer
    )

    assert result["issued"] == 0


async def test_vendor_bills_scheduled_until_escrow_runs_out(db, storage, renderer) -> None:
    await seed_loan(
        db,
        installments=((date(2026, 2, 1), "100.00", "800.00", "300.00"),),
        escrow=(("TAX", "2000.00", "100.00"), ("HOI", "0.00", "80.00")),
        vendors=(("TAX", "County Treasurer", date(2026, 1, 20)), ("HOI", "Acme Insurance", date(2026, 2, 1))),
    )

    result = await ServicingCycleService.run_daily_cycle(
        db, TENANT, as_of=date(2026, 1, 10), storage=storage, renderer=renderer
    )

    assert (result["billsQueued"], result["disbursementsScheduled"]) == (2, 1)
    bills = {b.bucket: b for b in (await db.execute(select(VendorBill))).scalars().all()}
    assert (bills["TAX"].amount, bills["TAX"].status) == (D("1200.00"), "Scheduled")
    assert (bills["HOI"].amount, bills["HOI"].status) == (D("960.00"), "Queued")

    disbursement = (await db.execute(select(Disbursement))).scalars().one()
    assert (disbursement.bill_id, disbursement.amount, disbursement.status) == (bills["TAX"].id, D("1200.00"), "Requested")
    assert disbursement.scheduled_date == date(2026, 1, 20)


async def test_vendor_bill_outside_horizon_not_queued(db, storage, renderer) -> None:
    await seed_loan(
        db,
        escrow=(("TAX", "2000.00", "100.00"),),
        vendors=(("TAX", "County Treasurer", date(2026, 6, 1)), ("HOA", "Lakeside HOA", date(2025, 12, 1))),
    )

    result = await ServicingCycleService.run_daily_cycle(
        db, TENANT, as_of=date(2026, 1, 10), storage=storage, renderer=renderer
    )

    assert result["billsQueued"] == 0


async def test_vendor_bill_not_duplicated(db, storage, renderer) -> None:
    await seed_loan(
        db,
        escrow=(("TAX", "2000.00", "100.00"),),
        vendors=(("TAX", "County Treasurer", date(2026, 1, 20)),),
    )
    await ServicingCycleService.run_daily_cycle(db, TENANT, as_of=date(2026, 1, 10), storage=storage, renderer=renderer)

    result = await ServicingCycleService.run_daily_cycle(
        db, TENANT, as_of=date(2026, 1, 11), storage=storage, renderer=renderer
    )

    assert result["billsQueued"] == 0
    assert len((await db.execute(select(VendorBill))).scalars().all()) == 1


# ==================== ESCROW ANALYSIS ====================

async def test_escrow_shortage_against_cushion(db) -> None:
    loan = await seed_loan(db, escrow=(("TAX", "100.00", "200.00"), ("HOI", "50.00", "100.00")))

    status = await EscrowAnalysisService.get_escrow_status(db, TENANT, loan.id)

    assert status["balance"] == D("150.00")
    assert status["cushion"] == D("600.00")
    assert status["shortage"] == D("450.00")
    assert status["shortageCollectThisCycle"] == D("100.00")


def test_shortage_collection() -> None:
    assert shortage_collection(D("0"), D("100")) == D("0.00")
    assert shortage_collection(D("1300.00"), D("100")) == D("109.00")
    assert shortage_collection(D("120.00"), D("100")) == D("100.00")


def test_implied_vendor_due_date_rolls_year() -> None:
    assert implied_vendor_due_date(date(2026, 12, 3)) == date(2027, 1, 15)
    assert implied_vendor_due_date(date(2026, 1, 31)) == date(2026, 2, 15)


def test_estimate_bill_amount_has_floor() -> None:
    assert estimate_bill_amount(D("2.00")) == D("50.00")
    assert estimate_bill_amount(D("100.00")) == D("1200.00")
