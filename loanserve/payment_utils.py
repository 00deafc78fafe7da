# payment_utils.py
# Money, hashing and clock helpers shared by the payment services.

import hashlib
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Union
from zoneinfo import ZoneInfo

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Any) -> Decimal:
    """
    Convert a user-supplied amount to Decimal.

    Floats go through str() so 0.1 stays 0.1. Raises ValueError for anything
    that is not a finite number.
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValueError(f"Invalid amount: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return result


def round_cents(value: Number) -> Decimal:
    """Round half-up to the cent."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def near_eq(a: Number, b: Number, tolerance: Decimal = CENT) -> bool:
    return abs(to_decimal(a) - to_decimal(b)) <= tolerance


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_today(tz_name: str) -> date:
    return datetime.now(ZoneInfo(tz_name)).date()
