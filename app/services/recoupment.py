"""
Advance recoupment waterfall.

    remaining_before  = max(0, advance_amount - advance_recouped)
    recoupment        = min(gross_royalty, remaining_before), never negative
    remaining_advance = remaining_before - recoupment
    net_payable       = gross_royalty - recoupment

Pure calculation. The contract's advance_recouped only moves when the
statement that carries this result is persisted.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from app.services.money import ZERO, to_decimal


@dataclass(frozen=True)
class RecoupmentResult:
    original_advance: Decimal
    previously_recouped: Decimal
    remaining_before: Decimal
    this_period_recoupment: Decimal
    remaining_advance: Decimal
    net_payable: Decimal

    @property
    def recouped_after(self) -> Decimal:
        return self.previously_recouped + self.this_period_recoupment


def apply_recoupment(
    gross_royalty: Decimal,
    advance_amount: Decimal,
    advance_recouped: Decimal,
) -> RecoupmentResult:
    """
    Recoup the outstanding advance from a period's gross royalty.

    Example: advance 2000.00, 500.00 already recouped, gross 600.00
    -> recoupment 600.00, remaining advance 900.00, net payable 0.00.
    """
    gross_royalty = to_decimal(gross_royalty)
    advance_amount = to_decimal(advance_amount)
    advance_recouped = to_decimal(advance_recouped)

    remaining_before = max(advance_amount - advance_recouped, ZERO)
    recoupment = max(min(gross_royalty, remaining_before), ZERO)

    return RecoupmentResult(
        original_advance=advance_amount,
        previously_recouped=advance_recouped,
        remaining_before=remaining_before,
        this_period_recoupment=recoupment,
        remaining_advance=remaining_before - recoupment,
        net_payable=gross_royalty - recoupment,
    )
