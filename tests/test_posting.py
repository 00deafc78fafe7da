from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from conftest import TENANT, seed_loan
from loanserve.allocation_service import AllocationEngine
from loanserve.exceptions import PaymentNotFound
from loanserve.ingestion_service import PaymentIngestionService
from loanserve.ledger_service import LedgerService
from loanserve.models import (
    EscrowSubAccount, Payment, PaymentReceipt, ScheduleInstallment, ServicingTransaction
)
from loanserve.posting_service import PostingService
from loanserve.suspense_service import SuspenseLedger

D = Decimal


async def add_payment(db, amount, loan_number="L-1001", status="Received") -> Payment:
    payment = Payment(
        tenant_id=TENANT, loan_number=loan_number, amount=D(amount), channel="MANUAL",
        reference="REF-1", status=status
    )
    db.add(payment)
    await db.commit()
    return payment


async def gl_for(db, payment_id):
    return await LedgerService.get_entries_for_payment(db, payment_id)


async def test_full_payment_posts_and_marks_installment_paid(db, storage, renderer) -> None:
    loan = await seed_loan(db)

    result = await PaymentIngestionService.ingest(
        db, TENANT, amount="1200.00", channel="MANUAL", loan_number="L-1001",
        storage=storage, renderer=renderer
    )

    assert result["status"] == "Posted"
    assert result["allocation"] == {
        "principal": "100.00", "interest": "800.00", "escrow": "300.00",
        "fees": "0.00", "leftover": "0.00", "strategy": "standard",
    }

    payment = await db.get(Payment, result["paymentId"])
    await db.refresh(payment)
    assert payment.status == "Posted"
    assert payment.loan_id == loan.id
    assert payment.posted_txn_id == result["transactionId"]

    entries = await gl_for(db, payment.id)
    assert [(e.debit_acct, e.credit_acct, e.amount) for e in entries] == [
        (1000, 4000, D("800.00")),
        (1000, 2100, D("300.00")),
        (1000, 1100, D("100.00")),
    ]

    installment = (await db.execute(select(ScheduleInstallment))).scalars().one()
    await db.refresh(installment)
    assert installment.paid is True
    assert installment.paid_at is not None

    escrow = (await db.execute(select(EscrowSubAccount))).scalars().one()
    assert (escrow.bucket, escrow.balance) == ("TAX", D("300.00"))

    txn = await db.get(ServicingTransaction, payment.posted_txn_id)
    assert (txn.type, txn.alloc_interest, txn.alloc_principal) == ("PAYMENT", D("800.00"), D("100.00"))

    receipt = (await db.execute(select(PaymentReceipt))).scalars().one()
    assert payment.receipt_id == receipt.id
    assert receipt.file_uri.startswith("file://")


async def test_small_payment_goes_to_suspense(db) -> None:
    loan = await seed_loan(db, installments=((date(2026, 1, 1), "300.00", "800.00", "300.00"),))
    payment = await add_payment(db, "10.00")

    result = await PostingService.post_payment(db, TENANT, payment.id)

    assert result["status"] == "Suspense"
    assert await SuspenseLedger.get_balance(db, TENANT, loan.id) == D("10.00")
    entries = await gl_for(db, payment.id)
    assert [(e.debit_acct, e.credit_acct, e.amount) for e in entries] == [(1000, 2200, D("10.00"))]

    installment = (await db.execute(select(ScheduleInstallment))).scalars().one()
    assert installment.paid is False


async def test_ingest_below_minimum_stays_received(db) -> None:
    await seed_loan(db)

    result = await PaymentIngestionService.ingest(db, TENANT, amount="10.00", channel="MANUAL", loan_number="L-1001")

    assert result["status"] == "Received"
    assert (await gl_for(db, result["paymentId"])) == []


async def test_amount_equal_to_threshold_posts(db) -> None:
    await seed_loan(db)
    payment = await add_payment(db, "25.00")

    result = await PostingService.post_payment(db, TENANT, payment.id)

    assert result["status"] == "Posted"
    assert result["allocation"]["interest"] == "25.00"
    installment = (await db.execute(select(ScheduleInstallment))).scalars().one()
    assert installment.paid is False


async def test_amount_just_below_threshold_suspends(db) -> None:
    await seed_loan(db)
    payment = await add_payment(db, "24.99")

    result = await PostingService.post_payment(db, TENANT, payment.id)

    assert result["status"] == "Suspense"


async def test_small_total_due_lowers_threshold(db) -> None:
    await seed_loan(db, installments=((date(2026, 1, 1), "5.00", "5.00", "0.00"),))
    payment = await add_payment(db, "10.00")

    result = await PostingService.post_payment(db, TENANT, payment.id)

    assert result["status"] == "Posted"


async def test_overpayment_goes_to_suspense_in_full(db) -> None:
    loan = await seed_loan(db)
    payment = await add_payment(db, "1500.00")

    result = await PostingService.post_payment(db, TENANT, payment.id)

    assert result["status"] == "Suspense"
    assert result["allocation"]["leftover"] == "300.00"
    assert await SuspenseLedger.get_balance(db, TENANT, loan.id) == D("1500.00")


async def test_suspense_accumulates(db) -> None:
    loan = await seed_loan(db)
    for amount in ("10.00", "12.50"):
        payment = await add_payment(db, amount)
        await PostingService.post_payment(db, TENANT, payment.id)

    assert await SuspenseLedger.get_balance(db, TENANT, loan.id) == D("22.50")


async def test_unknown_loan_rejected(db) -> None:
    await seed_loan(db)
    payment = await add_payment(db, "1200.00", loan_number="NOPE-1")

    result = await PostingService.post_payment(db, TENANT, payment.id)

    assert result == {"status": "Rejected", "error": "Unroutable - no loan match"}
    await db.refresh(payment)
    assert payment.status == "Rejected"
    assert payment.error == "Unroutable - no loan match"


async def test_loan_of_other_tenant_not_routable(db) -> None:
    await seed_loan(db, tenant_id="tenant-b")
    payment = await add_payment(db, "1200.00")

    result = await PostingService.post_payment(db, TENANT, payment.id)

    assert result["error"] == "Unroutable - no loan match"


async def test_inactive_account_rejected(db) -> None:
    await seed_loan(db, state="PaidOff")
    payment = await add_payment(db, "1200.00")

    result = await PostingService.post_payment(db, TENANT, payment.id)

    assert result == {"status": "Rejected", "error": "Loan not active in servicing"}


async def test_no_unpaid_installment_rejected(db) -> None:
    await seed_loan(db, installments=())
    payment = await add_payment(db, "1200.00")

    result = await PostingService.post_payment(db, TENANT, payment.id)

    assert result == {"status": "Rejected", "error": "No unpaid schedule rows"}


async def test_second_payment_applies_to_next_installment(db) -> None:
    await seed_loan(db, installments=(
        (date(2026, 1, 1), "100.00", "800.00", "300.00"),
        (date(2026, 2, 1), "101.00", "799.00", "300.00"),
    ))
    first = await add_payment(db, "1200.00")
    await PostingService.post_payment(db, TENANT, first.id)
    second = await add_payment(db, "1200.00")

    result = await PostingService.post_payment(db, TENANT, second.id)

    assert result["status"] == "Posted"
    assert result["allocation"]["principal"] == "101.00"
    txn = await db.get(ServicingTransaction, result["transactionId"])
    assert txn.installment_no == 2


async def test_accrued_late_fee_is_collected_before_principal(db) -> None:
    loan = await seed_loan(db)
    db.add(ServicingTransaction(
        tenant_id=TENANT, loan_id=loan.id, type="FEE", amount=D("45.00"), alloc_fees=D("45.00"),
        fee_code="LATE", installment_no=1
    ))
    await db.commit()
    payment = await add_payment(db, "1245.00")

    result = await PostingService.post_payment(db, TENANT, payment.id)

    assert result["status"] == "Posted"
    assert result["allocation"]["fees"] == "45.00"
    entries = await gl_for(db, payment.id)
    assert (1000, 4100, D("45.00")) in [(e.debit_acct, e.credit_acct, e.amount) for e in entries]
    assert await PostingService.accrued_fees(db, loan.id) == D("0.00")


async def test_posted_payment_cannot_post_again(db) -> None:
    await seed_loan(db)
    payment = await add_payment(db, "1200.00")
    await PostingService.post_payment(db, TENANT, payment.id)

    result = await PostingService.post_payment(db, TENANT, payment.id)

    assert result == {"status": "Posted", "error": "Payment is Posted"}
    assert len(await gl_for(db, payment.id)) == 3


async def test_failure_rolls_back_and_rejects(db) -> None:
    loan = await seed_loan(db)
    payment = await add_payment(db, "1200.00")

    class ExplodingEngine(AllocationEngine):
        def allocate(self, payment_amount, dues):
            raise RuntimeError("allocation store unavailable")

    result = await PostingService.post_payment(db, TENANT, payment.id, allocation_engine=ExplodingEngine())

    assert result["status"] == "Rejected"
    assert "allocation store unavailable" in result["error"]
    refreshed = (await db.execute(select(Payment).where(Payment.id == payment.id))).scalars().one()
    assert refreshed.status == "Rejected"
    assert await gl_for(db, payment.id) == []
    assert await SuspenseLedger.get_balance(db, TENANT, loan.id) == D("0.00")


async def test_ledger_failure_mid_posting_leaves_no_partial_state(db, monkeypatch) -> None:
    await seed_loan(db)
    payment = await add_payment(db, "1200.00")
    original = LedgerService.record_cash_receipt
    calls = []

    async def flaky_cash_receipt(*args, **kwargs):
        calls.append(kwargs.get("credit_acct"))
        if len(calls) == 3:
            raise RuntimeError("ledger unavailable")
        return await original(*args, **kwargs)

    monkeypatch.setattr(LedgerService, "record_cash_receipt", flaky_cash_receipt)

    result = await PostingService.post_payment(db, TENANT, payment.id)

    assert result == {"status": "Rejected", "error": "ledger unavailable"}
    assert calls == [4000, 2100, 1100]
    assert await gl_for(db, payment.id) == []
    txns = (await db.execute(
        select(ServicingTransaction).where(ServicingTransaction.type == "PAYMENT")
    )).scalars().all()
    assert txns == []
    assert (await db.execute(select(EscrowSubAccount))).scalars().all() == []
    installment = (await db.execute(select(ScheduleInstallment))).scalars().one()
    await db.refresh(installment)
    assert installment.paid is False
    refreshed = (await db.execute(select(Payment).where(Payment.id == payment.id))).scalars().one()
    await db.refresh(refreshed)
    assert refreshed.status == "Rejected"
    assert refreshed.posted_txn_id is None


async def test_unknown_payment_raises(db) -> None:
    with pytest.raises(PaymentNotFound):
        await PostingService.post_payment(db, TENANT, 999)


async def test_trial_balance_after_postings(db) -> None:
    await seed_loan(db)
    for amount in ("1200.00", "10.00"):
        payment = await add_payment(db, amount)
        await PostingService.post_payment(db, TENANT, payment.id)

    report = await LedgerService.trial_balance(db, TENANT)

    assert report["is_balanced"] is True
    assert report["accounts"][1000] == "1210.00"
    assert await LedgerService.get_account_balance(db, TENANT, 2200) == D("-10.00")
