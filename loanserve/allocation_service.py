"""
Allocation Service: Payment Waterfall
=====================================

Splits a payment across the components due on the current installment.

Standard order:     interest -> escrow -> fees -> principal -> leftover
Escrow-first order: escrow -> interest -> fees -> principal -> leftover

Each component takes min(remaining, due). The remaining amount is rounded to
the cent after every subtraction, so no component drifts by more than a cent.

INVARIANT: principal + interest + escrow + fees + leftover == payment amount
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

from .payment_utils import ZERO, round_cents, to_decimal

log = logging.getLogger(__name__)

COMPONENTS = ("principal", "interest", "escrow", "fees")

STANDARD_ORDER: Tuple[str, ...] = ("interest", "escrow", "fees", "principal")
ESCROW_FIRST_ORDER: Tuple[str, ...] = ("escrow", "interest", "fees", "principal")

WATERFALL_ORDERS = {
    "standard": STANDARD_ORDER,
    "escrow_first": ESCROW_FIRST_ORDER,
}


@dataclass
class DueAmounts:
    principal: Decimal = ZERO
    interest: Decimal = ZERO
    escrow: Decimal = ZERO
    fees: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return round_cents(self.principal + self.interest + self.escrow + self.fees)


@dataclass
class AllocationResult:
    principal: Decimal = ZERO
    interest: Decimal = ZERO
    escrow: Decimal = ZERO
    fees: Decimal = ZERO
    leftover: Decimal = ZERO
    strategy: str = field(default="standard", compare=False)

    @property
    def allocated(self) -> Decimal:
        return self.principal + self.interest + self.escrow + self.fees

    @property
    def total(self) -> Decimal:
        return self.allocated + self.leftover

    def as_dict(self) -> Dict[str, str]:
        """JSON-safe form stored on the payment row."""
        return {
            "principal": str(self.principal),
            "interest": str(self.interest),
            "escrow": str(self.escrow),
            "fees": str(self.fees),
            "leftover": str(self.leftover),
            "strategy": self.strategy,
        }


AllocationStrategy = Callable[[Decimal, DueAmounts], AllocationResult]


def waterfall(payment_amount, dues: DueAmounts, order: Tuple[str, ...] = STANDARD_ORDER) -> AllocationResult:
    """Apply payment_amount to dues in the given order; the remainder is leftover."""
    remaining = round_cents(payment_amount)
    parts = {name: ZERO for name in COMPONENTS}

    if remaining <= 0:
        # Nothing to apply; reversals and zero amounts never reach the schedule
        return AllocationResult(leftover=remaining, strategy=_order_name(order))

    for name in order:
        due = max(round_cents(getattr(dues, name)), ZERO)
        applied = min(remaining, due)
        parts[name] = applied
        remaining = round_cents(remaining - applied)

    return AllocationResult(leftover=remaining, strategy=_order_name(order), **parts)


def _order_name(order: Tuple[str, ...]) -> str:
    for name, candidate in WATERFALL_ORDERS.items():
        if candidate == tuple(order):
            return name
    return "custom"


def allocate(payment_amount, dues: DueAmounts) -> AllocationResult:
    """Standard waterfall: interest, escrow, fees, principal."""
    return waterfall(payment_amount, dues, STANDARD_ORDER)


def allocate_escrow_first(payment_amount, dues: DueAmounts) -> AllocationResult:
    """Escrow-first waterfall for programs that fund escrow before interest."""
    return waterfall(payment_amount, dues, ESCROW_FIRST_ORDER)


class AllocationEngine:
    """
    Allocation capability with a swappable strategy.

    An external strategy may be registered at startup. If it raises, or returns
    a split that does not add back to the payment amount, the built-in
    waterfall is used instead and the failure is only logged.
    """

    def __init__(self, order: str = "standard"):
        if order not in WATERFALL_ORDERS:
            raise ValueError(f"Unknown allocation order: {order}")
        self.order = order
        self._strategy: Optional[AllocationStrategy] = None

    def register_strategy(self, strategy: Optional[AllocationStrategy]) -> None:
        self._strategy = strategy

    def allocate(self, payment_amount, dues: DueAmounts) -> AllocationResult:
        amount = round_cents(payment_amount)

        if self._strategy is not None:
            try:
                result = self._strategy(amount, dues)
                if self._conserves(result, amount):
                    return result
                log.warning(
                    f"Allocation strategy returned a non-conserving split for {amount}; "
                    f"using {self.order} waterfall"
                )
            except Exception as e:
                log.warning(f"Allocation strategy failed ({e}); using {self.order} waterfall")

        return waterfall(amount, dues, WATERFALL_ORDERS[self.order])

    @staticmethod
    def _conserves(result: AllocationResult, amount: Decimal) -> bool:
        if not isinstance(result, AllocationResult):
            return False
        try:
            parts = [to_decimal(getattr(result, name)) for name in COMPONENTS]
            leftover = to_decimal(result.leftover)
        except ValueError:
            return False
        if any(p < 0 for p in parts):
            return False
        return round_cents(sum(parts) + leftover) == amount


_engine: Optional[AllocationEngine] = None


def get_allocation_engine() -> AllocationEngine:
    """Engine configured from ALLOCATION_ORDER, created on first use."""
    global _engine
    if _engine is None:
        from .config import settings
        _engine = AllocationEngine(settings.ALLOCATION_ORDER)
    return _engine


def register_allocation_strategy(strategy: Optional[AllocationStrategy]) -> None:
    """Install (or with None, remove) an external allocation strategy."""
    get_allocation_engine().register_strategy(strategy)
