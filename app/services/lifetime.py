"""
Lifetime sales tracker.

Keeps one cumulative {quantity, revenue} record per (title, format) and
advances it exactly once per royalty period. The first advance for a period
writes a LifetimeSalesSnapshot (the before/after window) and moves the
state; every later request for the same period, e.g. a co-author's
statement, reads that snapshot back. Lifetime position is a property of the
title, so co-authors always see the same window.

Callers serialize on the title through TitleLockRegistry and must commit
the session before releasing the lock.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncIterator, Dict, Mapping, Optional, Tuple
from uuid import UUID

from sqlalchemy import case, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.contract import SalesFormat
from app.models.lifetime_sales import LifetimeSalesSnapshot, LifetimeSalesState
from app.models.sales_record import SalesRecord
from app.services.exceptions import LifetimeStateError
from app.services.money import ZERO, to_decimal
from app.services.rate_schedule import RateSchedule

logger = logging.getLogger(__name__)

TitlePeriodKey = Tuple[UUID, UUID, date, date]


@dataclass(frozen=True)
class LifetimeWindow:
    """A title's cumulative sales in one format around one period."""
    format: SalesFormat
    lifetime_sales_before: int
    lifetime_sales_after: int
    lifetime_revenue_before: Decimal
    lifetime_revenue_after: Decimal

    @property
    def start_position(self) -> int:
        return self.lifetime_sales_before


@dataclass(frozen=True)
class TierPosition:
    """Where the title sits on a format's tier ladder after the period."""
    current_tier_rate: Decimal
    next_tier_threshold: Optional[int]
    units_to_next_tier: Optional[int]


def tier_position(schedule: RateSchedule, lifetime_sales: int) -> TierPosition:
    """Rate of the tier containing `lifetime_sales` and the distance to the next one."""
    current = schedule.tier_at(lifetime_sales)
    following = schedule.next_tier_after(current)
    if following is None:
        return TierPosition(current_tier_rate=current.rate, next_tier_threshold=None, units_to_next_tier=None)
    return TierPosition(
        current_tier_rate=current.rate,
        next_tier_threshold=following.min_quantity,
        units_to_next_tier=max(following.min_quantity - lifetime_sales, 0),
    )


class TitleLockRegistry:
    """
    In-process serialization point per (tenant, title, period).

    Holds one asyncio.Lock per key for as long as anyone is waiting on it.
    Cross-process exclusion on PostgreSQL comes from advisory_lock().
    """

    def __init__(self) -> None:
        self._locks: Dict[TitlePeriodKey, asyncio.Lock] = {}
        self._waiters: Dict[TitlePeriodKey, int] = {}

    @asynccontextmanager
    async def hold(
        self,
        tenant_id: UUID,
        title_id: UUID,
        period_start: date,
        period_end: date,
    ) -> AsyncIterator[None]:
        key = (tenant_id, title_id, period_start, period_end)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


title_locks = TitleLockRegistry()


def advisory_key(tenant_id: UUID, title_id: UUID, period_start: date, period_end: date) -> int:
    """Stable signed 64-bit key for pg_advisory_xact_lock."""
    raw = f"{tenant_id}:{title_id}:{period_start.isoformat()}:{period_end.isoformat()}".encode()
    return int.from_bytes(hashlib.sha256(raw).digest()[:8], "big", signed=True)


async def advisory_lock(
    db: AsyncSession,
    tenant_id: UUID,
    title_id: UUID,
    period_start: date,
    period_end: date,
) -> None:
    """Take a transaction-scoped advisory lock on PostgreSQL; no-op elsewhere."""
    if db.get_bind().dialect.name != "postgresql":
        return
    await db.execute(
        text("SELECT pg_advisory_xact_lock(:key)"),
        {"key": advisory_key(tenant_id, title_id, period_start, period_end)},
    )


async def _sales_totals(
    db: AsyncSession,
    tenant_id: UUID,
    title_id: UUID,
    sales_format: SalesFormat,
    date_from: Optional[date],
    date_before: date,
    include_returns: bool,
) -> Tuple[int, Decimal]:
    conditions = [
        SalesRecord.tenant_id == tenant_id,
        SalesRecord.title_id == title_id,
        SalesRecord.format == sales_format,
        SalesRecord.sale_date < date_before,
    ]
    if date_from is not None:
        conditions.append(SalesRecord.sale_date >= date_from)
    if include_returns:
        conditions.append(SalesRecord.counts_toward_royalties())
    else:
        conditions.append(SalesRecord.quantity > 0)

    # Returns reduce revenue by their magnitude
    signed_revenue = case(
        (SalesRecord.quantity < 0, -func.abs(SalesRecord.revenue)),
        else_=SalesRecord.revenue,
    )
    result = await db.execute(
        select(
            func.coalesce(func.sum(SalesRecord.quantity), 0),
            func.coalesce(func.sum(signed_revenue), 0),
        ).where(*conditions)
    )
    quantity, revenue = result.one()
    return max(int(quantity), 0), max(to_decimal(revenue), ZERO)


async def _get_snapshot(
    db: AsyncSession,
    tenant_id: UUID,
    title_id: UUID,
    sales_format: SalesFormat,
    period_start: date,
    period_end: date,
) -> Optional[LifetimeSalesSnapshot]:
    result = await db.execute(
        select(LifetimeSalesSnapshot).where(
            LifetimeSalesSnapshot.tenant_id == tenant_id,
            LifetimeSalesSnapshot.title_id == title_id,
            LifetimeSalesSnapshot.format == sales_format,
            LifetimeSalesSnapshot.period_start == period_start,
            LifetimeSalesSnapshot.period_end == period_end,
        )
    )
    return result.scalar_one_or_none()


async def _get_state(
    db: AsyncSession,
    tenant_id: UUID,
    title_id: UUID,
    sales_format: SalesFormat,
    for_update: bool = False,
) -> Optional[LifetimeSalesState]:
    query = select(LifetimeSalesState).where(
        LifetimeSalesState.tenant_id == tenant_id,
        LifetimeSalesState.title_id == title_id,
        LifetimeSalesState.format == sales_format,
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


def _window_from_snapshot(snapshot: LifetimeSalesSnapshot) -> LifetimeWindow:
    return LifetimeWindow(
        format=SalesFormat(snapshot.format),
        lifetime_sales_before=snapshot.quantity_before,
        lifetime_sales_after=snapshot.quantity_after,
        lifetime_revenue_before=to_decimal(snapshot.revenue_before),
        lifetime_revenue_after=to_decimal(snapshot.revenue_after),
    )


async def _position_before(
    db: AsyncSession,
    state: Optional[LifetimeSalesState],
    tenant_id: UUID,
    title_id: UUID,
    sales_format: SalesFormat,
    period_start: date,
    include_returns: bool,
) -> Tuple[int, Decimal]:
    """
    Cumulative quantity/revenue just before `period_start`.

    Without a state row the title is seeded from its full sales history;
    with one, sales between `as_of` and the period start are folded in.
    """
    if state is None:
        return await _sales_totals(
            db, tenant_id, title_id, sales_format, None, period_start, include_returns
        )

    if period_start <= state.as_of:
        raise LifetimeStateError(
            f"Lifetime state for title {title_id} ({sales_format.value}) is already "
            f"advanced to {state.as_of}; cannot advance a period starting {period_start}"
        )

    quantity, revenue = state.quantity, to_decimal(state.revenue)
    gap_start = state.as_of + timedelta(days=1)
    if gap_start < period_start:
        gap_quantity, gap_revenue = await _sales_totals(
            db, tenant_id, title_id, sales_format, gap_start, period_start, include_returns
        )
        quantity += gap_quantity
        revenue += gap_revenue
    return quantity, revenue


async def advance_title(
    db: AsyncSession,
    tenant_id: UUID,
    title_id: UUID,
    period_start: date,
    period_end: date,
    period_totals: Mapping[SalesFormat, Tuple[int, Decimal]],
    include_returns: bool = True,
) -> Dict[SalesFormat, LifetimeWindow]:
    """
    Advance a title's lifetime state by one period, once.

    Args:
        db: Session whose transaction the caller commits while holding the title lock
        tenant_id: Tenant UUID
        title_id: Title UUID
        period_start: First day of the period
        period_end: Last day of the period
        period_totals: Quantity and revenue the period adds per format
        include_returns: Whether historical returns count toward the position

    Returns:
        One LifetimeWindow per format in `period_totals`

    Raises:
        LifetimeStateError: If the state has moved past this period without
            a recorded snapshot for it
    """
    windows: Dict[SalesFormat, LifetimeWindow] = {}

    for sales_format, (delta_quantity, delta_revenue) in period_totals.items():
        sales_format = SalesFormat(sales_format)

        snapshot = await _get_snapshot(db, tenant_id, title_id, sales_format, period_start, period_end)
        if snapshot is not None:
            logger.debug(f"Reusing lifetime snapshot for title {title_id} {sales_format.value}")
            windows[sales_format] = _window_from_snapshot(snapshot)
            continue

        state = await _get_state(db, tenant_id, title_id, sales_format, for_update=True)
        quantity_before, revenue_before = await _position_before(
            db, state, tenant_id, title_id, sales_format, period_start, include_returns
        )
        quantity_after = quantity_before + delta_quantity
        revenue_after = revenue_before + to_decimal(delta_revenue)

        if state is None:
            state = LifetimeSalesState(
                tenant_id=tenant_id,
                title_id=title_id,
                format=sales_format,
                quantity=quantity_after,
                revenue=revenue_after,
                as_of=period_end,
                version=1,
            )
            db.add(state)
        else:
            state.quantity = quantity_after
            state.revenue = revenue_after
            state.as_of = period_end
            state.version = state.version + 1

        db.add(
            LifetimeSalesSnapshot(
                tenant_id=tenant_id,
                title_id=title_id,
                format=sales_format,
                period_start=period_start,
                period_end=period_end,
                quantity_before=quantity_before,
                quantity_after=quantity_after,
                revenue_before=revenue_before,
                revenue_after=revenue_after,
                state_version=state.version,
            )
        )
        await db.flush()

        logger.info(
            f"Advanced lifetime sales for title {title_id} {sales_format.value}: "
            f"{quantity_before} -> {quantity_after} (v{state.version})"
        )
        windows[sales_format] = LifetimeWindow(
            format=sales_format,
            lifetime_sales_before=quantity_before,
            lifetime_sales_after=quantity_after,
            lifetime_revenue_before=revenue_before,
            lifetime_revenue_after=revenue_after,
        )

    return windows


async def peek_title(
    db: AsyncSession,
    tenant_id: UUID,
    title_id: UUID,
    period_start: date,
    period_end: date,
    period_totals: Mapping[SalesFormat, Tuple[int, Decimal]],
    include_returns: bool = True,
) -> Dict[SalesFormat, LifetimeWindow]:
    """
    Compute the windows advance_title would produce, without writing anything.

    A recorded snapshot is returned as is. If the state has already moved
    past the period without one, the position falls back to the sales
    history before the period.
    """
    windows: Dict[SalesFormat, LifetimeWindow] = {}

    for sales_format, (delta_quantity, delta_revenue) in period_totals.items():
        sales_format = SalesFormat(sales_format)

        snapshot = await _get_snapshot(db, tenant_id, title_id, sales_format, period_start, period_end)
        if snapshot is not None:
            windows[sales_format] = _window_from_snapshot(snapshot)
            continue

        state = await _get_state(db, tenant_id, title_id, sales_format)
        if state is not None and period_start <= state.as_of:
            state = None
        quantity_before, revenue_before = await _position_before(
            db, state, tenant_id, title_id, sales_format, period_start, include_returns
        )
        windows[sales_format] = LifetimeWindow(
            format=sales_format,
            lifetime_sales_before=quantity_before,
            lifetime_sales_after=quantity_before + delta_quantity,
            lifetime_revenue_before=revenue_before,
            lifetime_revenue_after=revenue_before + to_decimal(delta_revenue),
        )

    return windows


async def get_title_states(
    db: AsyncSession,
    tenant_id: UUID,
    title_id: UUID,
) -> list[LifetimeSalesState]:
    """All lifetime state rows of a title, ordered by format."""
    result = await db.execute(
        select(LifetimeSalesState)
        .where(
            LifetimeSalesState.tenant_id == tenant_id,
            LifetimeSalesState.title_id == title_id,
        )
        .order_by(LifetimeSalesState.format)
    )
    return list(result.scalars().all())
