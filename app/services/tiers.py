"""
Tier crossover calculator.

Partitions a period's quantity across volume tiers, starting from a
cumulative position on the tier ladder:

    window       = [start_position, start_position + delta)
    tier range   = [min_quantity, max_quantity + 1)   (open-ended: to infinity)
    in_tier      = max(0, min(tier_upper, window_end) - max(min_quantity, start_position))
    royalty      = in_tier * unit_value * rate

Period mode starts every period at 0. Lifetime mode starts at the title's
cumulative quantity before the period, so a period can straddle a tier
boundary: with a boundary at 50,000, a lifetime position of 48,000 and
5,000 new units, 2,000 units earn the lower rate and 3,000 the higher one.

No rounding happens here; callers round once per format.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence

from app.services.exceptions import NegativeDeltaUnderflow
from app.services.rate_schedule import Tier


@dataclass(frozen=True)
class TierBreakdown:
    """Units and royalty attributed to one tier."""
    tier_min_quantity: int
    tier_max_quantity: Optional[int]
    tier_rate: Decimal
    quantity_in_tier: int
    royalty_earned: Decimal


def calculate_crossover(
    start_position: int,
    delta: int,
    tiers: Sequence[Tier],
    unit_value: Decimal,
) -> List[TierBreakdown]:
    """
    Split `delta` units across `tiers` starting at `start_position`.

    Args:
        start_position: Cumulative quantity sold before this period
        delta: Net quantity for the period (must be >= 0)
        tiers: Validated tiers sorted by min_quantity
        unit_value: Average revenue per unit for the period

    Returns:
        Ordered tier breakdowns; quantities sum exactly to `delta`.
        Empty when delta is 0.

    Raises:
        NegativeDeltaUnderflow: If delta is negative
    """
    if delta < 0:
        raise NegativeDeltaUnderflow(f"Tier delta cannot be negative (got {delta})")
    if start_position < 0:
        raise ValueError(f"start_position cannot be negative (got {start_position})")

    breakdowns: List[TierBreakdown] = []
    if delta == 0:
        return breakdowns

    window_end = start_position + delta

    for tier in tiers:
        upper = tier.upper_bound
        if upper is not None and upper <= start_position:
            continue
        if tier.min_quantity >= window_end:
            break

        overlap_start = max(tier.min_quantity, start_position)
        overlap_end = window_end if upper is None else min(upper, window_end)
        quantity_in_tier = max(0, overlap_end - overlap_start)

        if quantity_in_tier == 0:
            continue

        breakdowns.append(
            TierBreakdown(
                tier_min_quantity=tier.min_quantity,
                tier_max_quantity=tier.max_quantity,
                tier_rate=tier.rate,
                quantity_in_tier=quantity_in_tier,
                royalty_earned=Decimal(quantity_in_tier) * unit_value * tier.rate,
            )
        )

    return breakdowns


def total_royalty(breakdowns: Sequence[TierBreakdown]) -> Decimal:
    """Unrounded sum of royalty across tier breakdowns."""
    return sum((b.royalty_earned for b in breakdowns), Decimal("0"))
