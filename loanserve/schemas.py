# schemas.py
# Pydantic models for request/response validation and serialization.

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ManualPaymentRequest(BaseModel):
    loan_number: Optional[str] = Field(default=None, alias="loanNumber")
    loan_id: Optional[int] = Field(default=None, alias="loanId")
    amount: Decimal
    channel: str = "MANUAL"
    reference: Optional[str] = None
    memo: Optional[str] = None

    class Config:
        populate_by_name = True


class ManualMatchRequest(BaseModel):
    match_id: int = Field(alias="matchId")
    payment_id: int = Field(alias="paymentId")

    class Config:
        populate_by_name = True


class CycleTickRequest(BaseModel):
    as_of: Optional[date] = Field(default=None, alias="asOf")

    class Config:
        populate_by_name = True


class BankTransactionIn(BaseModel):
    amount: Decimal
    reference: Optional[str] = None
    description: Optional[str] = None


class Payment(BaseModel):
    id: int
    tenant_id: str
    batch_id: Optional[int] = None
    loan_id: Optional[int] = None
    loan_number: Optional[str] = None
    amount: Decimal
    channel: str
    reference: Optional[str] = None
    memo: Optional[str] = None
    status: str
    allocation: Optional[Dict[str, Any]] = None
    posted_txn_id: Optional[int] = None
    receipt_id: Optional[int] = None
    error: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SuspenseBalance(BaseModel):
    loan_id: int
    balance: Decimal
    updated_at: Optional[datetime] = None


class Statement(BaseModel):
    id: int
    loan_id: int
    statement_date: date
    cycle_label: str
    file_uri: str
    file_sha256: str
    summary: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class VendorBill(BaseModel):
    id: int
    loan_id: int
    vendor_id: int
    bucket: str
    due_date: date
    amount: Decimal
    status: str

    class Config:
        from_attributes = True


class PaymentList(BaseModel):
    loan_id: int
    payments: List[Payment]


class GLEntry(BaseModel):
    id: int
    loan_id: Optional[int] = None
    payment_id: Optional[int] = None
    debit_acct: int
    credit_acct: int
    amount: Decimal
    memo: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class GLAccountBalance(BaseModel):
    acct: int
    balance: Decimal
