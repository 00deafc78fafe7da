# policy.py
# Delinquency and late-fee policy. Pure functions, no I/O.

from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

from .payment_utils import round_cents


def grace_days(account_override: Optional[int], default: int) -> int:
    """Account-level grace period when set, else the tenant-wide default."""
    if account_override is None:
        return default
    return max(0, int(account_override))


def days_past_due(due_date: date, paid: bool, as_of: date) -> int:
    """Days elapsed beyond the due date; 0 when paid or not yet due."""
    if paid:
        return 0
    return max(0, (as_of - due_date).days)


def delinquency_bucket(dpd: int, buckets: Sequence[int]) -> int:
    """
    Highest configured threshold not exceeding dpd.

    With buckets (0, 30, 60, 90, 120): 0..29 -> 0, 30..59 -> 30, ..., 120+ -> 120.
    """
    ordered = sorted(buckets)
    selected = ordered[0] if ordered else 0
    for threshold in ordered:
        if threshold <= dpd:
            selected = threshold
        else:
            break
    return selected


def bucket_label(bucket: int, buckets: Sequence[int]) -> str:
    ordered = sorted(buckets)
    if ordered and bucket == ordered[-1]:
        return f"{bucket}+"
    return str(bucket)


def late_fee(pmt_principal_interest, pct: Decimal) -> Decimal:
    """Late fee as a percentage of the scheduled principal and interest payment."""
    return round_cents(Decimal(str(pmt_principal_interest)) * Decimal(str(pct)))
