import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_loanserve.db"
os.environ.setdefault("ACH_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import date  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from loanserve.database import Base, SessionLocal, engine  # noqa: E402
from loanserve.deps import get_db  # noqa: E402
from loanserve.main import app  # noqa: E402
from loanserve.models import (  # noqa: E402
    EscrowSubAccount, Loan, ScheduleInstallment, ServicingAccount, Vendor
)
from loanserve.statement_service import ArtifactRenderer, get_renderer  # noqa: E402
from loanserve.storage_service import LocalObjectStorage, get_object_storage  # noqa: E402

TENANT = "tenant-a"


@pytest.fixture()
async def reset_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture()
async def db(reset_db):
    async with SessionLocal() as session:
        yield session


@pytest.fixture()
def storage(tmp_path) -> LocalObjectStorage:
    return LocalObjectStorage(str(tmp_path / "artifacts"))


@pytest.fixture()
def renderer() -> ArtifactRenderer:
    return ArtifactRenderer(header="Test Servicer - Monthly Statement")


@pytest.fixture()
async def client(reset_db, storage, renderer):
    async def override_get_db():
        async with SessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_object_storage] = lambda: storage
    app.dependency_overrides[get_renderer] = lambda: renderer
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def seed_loan(
    db,
    loan_number: str = "L-1001",
    tenant_id: str = TENANT,
    state: str = "Active",
    pmt_principal_interest: str = "900.00",
    grace_days=None,
    installments=((date(2026, 1, 1), "100.00", "800.00", "300.00"),),
    escrow=(),
    vendors=(),
) -> Loan:
    """
    Loan with servicing account and schedule.

    installments: (due_date, principal, interest, escrow) per row, numbered from 1
    escrow: (bucket, balance, monthly_accrual)
    vendors: (type, name, next_due_date)
    """
    loan = Loan(tenant_id=tenant_id, loan_number=loan_number)
    db.add(loan)
    await db.flush()

    db.add(ServicingAccount(
        tenant_id=tenant_id,
        loan_id=loan.id,
        state=state,
        grace_days=grace_days,
        pmt_principal_interest=Decimal(pmt_principal_interest)
    ))
    for number, (due_date, principal, interest, escrow_due) in enumerate(installments, start=1):
        db.add(ScheduleInstallment(
            tenant_id=tenant_id,
            loan_id=loan.id,
            installment_no=number,
            due_date=due_date,
            principal_due=Decimal(principal),
            interest_due=Decimal(interest),
            escrow_due=Decimal(escrow_due),
            principal_balance_after=Decimal("200000.00") - Decimal(principal) * number
        ))
    for bucket, balance, accrual in escrow:
        db.add(EscrowSubAccount(
            tenant_id=tenant_id,
            loan_id=loan.id,
            bucket=bucket,
            balance=Decimal(balance),
            monthly_accrual=Decimal(accrual)
        ))
    for vendor_type, name, next_due in vendors:
        db.add(Vendor(tenant_id=tenant_id, loan_id=loan.id, type=vendor_type, name=name, next_due_date=next_due))

    await db.commit()
    return loan
