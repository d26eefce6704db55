"""
Rate schedule resolver.

Turns a contract's tier rows for one sales format into a validated,
ordered RateSchedule. A valid schedule:

1. Has at least one tier for the format
2. Starts at quantity 0
3. Is contiguous: tier[i+1].min_quantity == tier[i].max_quantity + 1
4. Has exactly one open-ended tier (max_quantity is None), and it is last
5. Has every rate within [0, 1]
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.contract import SalesFormat
from app.models.contract_tier import ContractTier
from app.services.exceptions import ScheduleError
from app.services.money import to_decimal


@dataclass(frozen=True)
class Tier:
    """A quantity range [min_quantity, max_quantity] paid at `rate`."""
    min_quantity: int
    max_quantity: Optional[int]
    rate: Decimal

    @property
    def upper_bound(self) -> Optional[int]:
        """Exclusive upper position of the tier, None when open-ended."""
        if self.max_quantity is None:
            return None
        return self.max_quantity + 1

    @property
    def is_open_ended(self) -> bool:
        return self.max_quantity is None

    def contains(self, position: int) -> bool:
        if position < self.min_quantity:
            return False
        return self.upper_bound is None or position < self.upper_bound


@dataclass(frozen=True)
class RateSchedule:
    """Validated, ordered tiers for one sales format."""
    format: SalesFormat
    tiers: Tuple[Tier, ...]

    @property
    def top_tier(self) -> Tier:
        return self.tiers[-1]

    def tier_at(self, position: int) -> Tier:
        """Tier containing the given cumulative position (top tier past the ladder)."""
        for tier in self.tiers:
            if tier.contains(position):
                return tier
        return self.top_tier

    def next_tier_after(self, tier: Tier) -> Optional[Tier]:
        index = self.tiers.index(tier)
        if index + 1 < len(self.tiers):
            return self.tiers[index + 1]
        return None


def _as_tier(row) -> Tier:
    if isinstance(row, Tier):
        return row
    return Tier(
        min_quantity=int(row.min_quantity),
        max_quantity=None if row.max_quantity is None else int(row.max_quantity),
        rate=to_decimal(row.rate),
    )


def _row_format(row) -> Optional[SalesFormat]:
    value = getattr(row, "format", None)
    return None if value is None else SalesFormat(value)


def resolve_schedule(rows: Iterable, sales_format: SalesFormat | str) -> RateSchedule:
    """
    Build and validate the schedule for one format.

    Args:
        rows: ContractTier rows (or Tier values) of a contract; rows carrying
            a different `format` are ignored
        sales_format: Format to resolve

    Returns:
        RateSchedule sorted by min_quantity

    Raises:
        ScheduleError: If the tiers are missing, overlapping, gapped, have an
            invalid rate, or the top tier is not open-ended
    """
    sales_format = SalesFormat(sales_format)
    tiers = sorted(
        (_as_tier(row) for row in rows if _row_format(row) in (None, sales_format)),
        key=lambda t: t.min_quantity,
    )

    if not tiers:
        raise ScheduleError(f"No tiers configured for format '{sales_format.value}'")

    if tiers[0].min_quantity != 0:
        raise ScheduleError(
            f"First {sales_format.value} tier must start at 0, starts at {tiers[0].min_quantity}"
        )

    open_ended = [t for t in tiers if t.is_open_ended]
    if len(open_ended) != 1:
        raise ScheduleError(
            f"Format '{sales_format.value}' must have exactly one open-ended top tier, found {len(open_ended)}"
        )
    if not tiers[-1].is_open_ended:
        raise ScheduleError(f"Open-ended {sales_format.value} tier must be the top tier")

    for tier in tiers:
        if tier.rate < 0 or tier.rate > 1:
            raise ScheduleError(f"Tier rate {tier.rate} is outside [0, 1]")
        if tier.max_quantity is not None and tier.max_quantity < tier.min_quantity:
            raise ScheduleError(
                f"Tier max_quantity {tier.max_quantity} is below min_quantity {tier.min_quantity}"
            )

    for lower, upper in zip(tiers, tiers[1:]):
        expected = lower.max_quantity + 1
        if upper.min_quantity < expected:
            raise ScheduleError(
                f"Tiers overlap: {lower.min_quantity}-{lower.max_quantity} and "
                f"{upper.min_quantity}-{upper.max_quantity}"
            )
        if upper.min_quantity > expected:
            raise ScheduleError(
                f"Gap between tiers: {lower.max_quantity} is followed by {upper.min_quantity}"
            )

    return RateSchedule(format=sales_format, tiers=tuple(tiers))


def scheduled_formats(rows: Iterable) -> set[SalesFormat]:
    """Formats a contract has any tiers for."""
    return {SalesFormat(row.format) for row in rows}


async def load_schedule(
    db: AsyncSession,
    contract_id: UUID,
    sales_format: SalesFormat | str,
) -> RateSchedule:
    """
    Load a contract's tiers for one format and validate them.

    Args:
        db: Database session
        contract_id: Contract UUID
        sales_format: Format to resolve

    Returns:
        Validated RateSchedule
    """
    sales_format = SalesFormat(sales_format)
    result = await db.execute(
        select(ContractTier)
        .where(
            ContractTier.contract_id == contract_id,
            ContractTier.format == sales_format,
        )
        .order_by(ContractTier.min_quantity)
    )
    return resolve_schedule(result.scalars().all(), sales_format)
