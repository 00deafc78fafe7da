from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from conftest import TENANT
from loanserve.exceptions import MatchNotFound, PaymentNotFound, StatementNotFound, ValidationError
from loanserve.models import BankStatement, Payment, ReconciliationMatch
from loanserve.reconciliation_service import ReconciliationService

D = Decimal

NOW = datetime(2026, 3, 2, 12, 0, 0)
STMT_DATE = date(2026, 3, 1)


async def posted_payment(db, amount, created_at=NOW, tenant_id=TENANT, status="Posted") -> Payment:
    payment = Payment(
        tenant_id=tenant_id, loan_number="L-1001", amount=D(amount), channel="ACH",
        reference=f"ACH-{amount}", status=status, created_at=created_at
    )
    db.add(payment)
    await db.commit()
    return payment


async def import_statement(db, storage, transactions, now=NOW):
    return await ReconciliationService.import_statement(
        db, TENANT,
        stmt_date=STMT_DATE,
        opening_balance="10000.00",
        closing_balance="12410.00",
        transactions=transactions,
        file_name="bank-20260301.csv",
        file_content=b"date,amount\n2026-03-01,1200.00\n",
        storage=storage,
        now=now
    )


async def test_auto_match_within_window(db, storage) -> None:
    payment = await posted_payment(db, "1200.00", created_at=NOW - timedelta(days=1))

    result = await import_statement(db, storage, [{"amount": "1200.00", "reference": "DEP-1"}])

    assert result["matchedCount"] == 1
    assert result["reconciliationComplete"] is True
    match = result["matches"][0]
    assert (match["matched"], match["matchType"], match["paymentId"]) == (True, "Auto", payment.id)
    assert result["fileUri"].endswith("2026-03-01-bank-20260301.csv")
    assert await storage.get_bytes(result["fileUri"]) == b"date,amount\n2026-03-01,1200.00\n"


async def test_amount_mismatch_gets_review_placeholder(db, storage) -> None:
    await posted_payment(db, "1200.00")

    result = await import_statement(db, storage, [{"amount": "1199.98", "reference": "DEP-1"}])

    assert result["matchedCount"] == 0
    assert result["unmatchedCount"] == 1
    match = result["matches"][0]
    assert match["matchType"] == "Manual"
    assert match["requiresManualReview"] is True

    row = (await db.execute(select(ReconciliationMatch))).scalars().one()
    assert row.payment_id is None
    assert row.requires_review is True
    assert row.matched_at is None


async def test_window_is_anchored_at_import_time(db, storage) -> None:
    await posted_payment(db, "1200.00", created_at=NOW)

    result = await import_statement(
        db, storage, [{"amount": "1200.00"}], now=NOW + timedelta(days=3)
    )

    assert result["matches"][0]["matchType"] == "Manual"


async def test_only_posted_payments_of_tenant_match(db, storage) -> None:
    await posted_payment(db, "1200.00", status="Suspense")
    await posted_payment(db, "1200.00", tenant_id="tenant-b")

    result = await import_statement(db, storage, [{"amount": "1200.00"}])

    assert result["matchedCount"] == 0


async def test_payment_matched_at_most_once(db, storage) -> None:
    earlier = await posted_payment(db, "500.00", created_at=NOW - timedelta(hours=30))
    closest = await posted_payment(db, "500.00", created_at=NOW - timedelta(hours=1))

    result = await import_statement(db, storage, [{"amount": "500.00"}, {"amount": "500.00"}, {"amount": "500.00"}])

    paired = [m.get("paymentId") for m in result["matches"]]
    assert paired == [closest.id, earlier.id, None]
    assert result["reconciliationComplete"] is False


async def test_report_totals(db, storage) -> None:
    await posted_payment(db, "1200.00")
    await import_statement(db, storage, [{"amount": "1200.00", "reference": "DEP-1"}, {"amount": "10.00"}])

    report = await ReconciliationService.get_reconciliation_report(db, TENANT, STMT_DATE)

    assert report["statement"]["openingBalance"] == "10000.00"
    assert report["statement"]["closingBalance"] == "12410.00"
    assert len(report["statement"]["fileSha256"]) == 64
    assert report["reconciliation"] == {
        "totalTransactions": 2,
        "matchedTransactions": 1,
        "unmatchedTransactions": 1,
        "totalAmount": "1210.00",
        "matchedAmount": "1200.00",
        "unmatchedAmount": "10.00",
        "reconciliationComplete": False,
    }
    assert [m["amount"] for m in report["matches"]] == ["1200.00", "10.00"]
    assert report["matches"][0]["paymentReference"] == "ACH-1200.00"


async def test_report_for_unknown_date(db) -> None:
    with pytest.raises(StatementNotFound):
        await ReconciliationService.get_reconciliation_report(db, TENANT, STMT_DATE)


async def test_invalid_transaction_amount_stores_nothing(db, storage) -> None:
    with pytest.raises(ValidationError):
        await import_statement(db, storage, [{"amount": "twelve"}])

    assert (await db.execute(select(BankStatement))).scalars().all() == []


async def test_manual_match_binds_payment(db, storage) -> None:
    payment = await posted_payment(db, "1200.00", created_at=NOW - timedelta(days=10))
    result = await import_statement(db, storage, [{"amount": "1200.00"}])
    match_id = result["matches"][0]["matchId"]

    outcome = await ReconciliationService.manual_match(db, TENANT, match_id, payment.id)

    assert outcome == {"success": True, "matchId": match_id, "paymentId": payment.id, "matchType": "Manual"}
    row = await db.get(ReconciliationMatch, match_id)
    await db.refresh(row)
    assert (row.payment_id, row.requires_review) == (payment.id, False)
    assert row.matched_at is not None

    report = await ReconciliationService.get_reconciliation_report(db, TENANT, STMT_DATE)
    assert report["reconciliation"]["reconciliationComplete"] is True


async def test_manual_match_rejects_payment_matched_elsewhere(db, storage) -> None:
    payment = await posted_payment(db, "1200.00")
    result = await import_statement(db, storage, [{"amount": "1200.00"}, {"amount": "75.00"}])

    with pytest.raises(ValidationError):
        await ReconciliationService.manual_match(db, TENANT, result["matches"][1]["matchId"], payment.id)


async def test_manual_match_unknown_ids(db, storage) -> None:
    payment = await posted_payment(db, "1200.00")
    result = await import_statement(db, storage, [{"amount": "75.00"}])

    with pytest.raises(MatchNotFound):
        await ReconciliationService.manual_match(db, TENANT, 999, payment.id)
    with pytest.raises(PaymentNotFound):
        await ReconciliationService.manual_match(db, TENANT, result["matches"][0]["matchId"], 999)
