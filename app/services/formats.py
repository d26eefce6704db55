"""
Format royalty aggregator.

Runs the tier crossover once per sales format and sums the results into a
title-level gross for the period. Also owns the returns policy, because
where returns are deducted decides what quantity the tier walk sees:

- net_before_tiers: returns are netted from each format's quantity and
  revenue (floored at zero) before the tier walk. `returns_deduction`
  reports the returned revenue; gross royalty equals the format total.
- after_tiers: the tier walk sees gross sales; each format's royalty is then
  reduced by format_royalty * returns_revenue / sales_revenue, capped at the
  format's royalty. `returns_deduction` is the royalty removed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from app.models.contract import SalesFormat
from app.services.exceptions import InsufficientDataWarning, NegativeDeltaUnderflow
from app.services.money import ZERO, quantize_money, to_decimal
from app.services.rate_schedule import RateSchedule
from app.services.tiers import TierBreakdown, calculate_crossover, total_royalty

logger = logging.getLogger(__name__)


class ReturnsPolicy(str, Enum):
    """Where returns are deducted."""
    NET_BEFORE_TIERS = "net_before_tiers"
    AFTER_TIERS = "after_tiers"


@dataclass(frozen=True)
class FormatSales:
    """Sales and returns of one format in one period (returns as positive magnitudes)."""
    format: SalesFormat
    sales_quantity: int = 0
    sales_revenue: Decimal = ZERO
    returns_quantity: int = 0
    returns_revenue: Decimal = ZERO


@dataclass(frozen=True)
class FormatPeriodInput:
    """Quantity and revenue the tier walk runs on, after the returns policy."""
    format: SalesFormat
    total_quantity: int
    total_revenue: Decimal
    sales_revenue: Decimal
    returns_quantity: int
    returns_revenue: Decimal

    @property
    def unit_value(self) -> Decimal:
        if self.total_quantity == 0:
            return ZERO
        return self.total_revenue / Decimal(self.total_quantity)


@dataclass(frozen=True)
class FormatBreakdown:
    """Royalty result for one format."""
    format: SalesFormat
    total_quantity: int
    total_revenue: Decimal
    tier_breakdowns: Tuple[TierBreakdown, ...]
    format_royalty: Decimal
    returns_deduction: Decimal = ZERO


@dataclass(frozen=True)
class FormatAggregate:
    """All formats of a title for one period."""
    breakdowns: Tuple[FormatBreakdown, ...]
    gross_format_royalty: Decimal
    returns_deduction: Decimal
    gross_royalty: Decimal


@dataclass
class PreparedSales:
    """Per-format tier inputs plus any warnings raised while netting returns."""
    inputs: Dict[SalesFormat, FormatPeriodInput] = field(default_factory=dict)
    warnings: List[InsufficientDataWarning] = field(default_factory=list)


def aggregate_sales(records: Iterable) -> Dict[SalesFormat, FormatSales]:
    """
    Fold sales records into one FormatSales per format.

    Records with negative quantity are returns; their magnitudes are summed
    into returns_quantity / returns_revenue whatever sign the revenue was
    recorded with.
    """
    totals: Dict[SalesFormat, Dict[str, object]] = {}
    for record in records:
        fmt = SalesFormat(record.format)
        bucket = totals.setdefault(
            fmt,
            {"sq": 0, "sr": ZERO, "rq": 0, "rr": ZERO},
        )
        quantity = int(record.quantity)
        revenue = to_decimal(record.revenue)
        if quantity < 0:
            bucket["rq"] += -quantity
            bucket["rr"] += abs(revenue)
        else:
            bucket["sq"] += quantity
            bucket["sr"] += revenue

    return {
        fmt: FormatSales(
            format=fmt,
            sales_quantity=b["sq"],
            sales_revenue=b["sr"],
            returns_quantity=b["rq"],
            returns_revenue=b["rr"],
        )
        for fmt, b in totals.items()
    }


def _check_underflow(
    sales: FormatSales,
    tolerance: Optional[int],
    warnings: List[InsufficientDataWarning],
) -> None:
    excess_quantity = sales.returns_quantity - sales.sales_quantity
    excess_revenue = sales.returns_revenue - sales.sales_revenue

    if excess_quantity <= 0 and excess_revenue <= 0:
        return

    if tolerance is not None and excess_quantity > tolerance:
        raise NegativeDeltaUnderflow(
            f"Returns exceed {sales.format.value} sales by {excess_quantity} units "
            f"(tolerance {tolerance})"
        )

    message = (
        f"Returns exceed {sales.format.value} sales "
        f"({sales.returns_quantity} returned vs {sales.sales_quantity} sold, "
        f"{sales.returns_revenue} vs {sales.sales_revenue} revenue); royalty floored at zero"
    )
    logger.warning(message)
    warnings.append(
        InsufficientDataWarning(
            format=sales.format.value,
            message=message,
            excess_quantity=max(excess_quantity, 0),
        )
    )


def prepare_format_inputs(
    sales_by_format: Mapping[SalesFormat, FormatSales],
    formats: Iterable[SalesFormat],
    policy: ReturnsPolicy,
    tolerance: Optional[int] = None,
) -> PreparedSales:
    """
    Apply the returns policy to every format of the period.

    Args:
        sales_by_format: Aggregated sales per format
        formats: Every format to report (sold, returned or scheduled)
        policy: Returns placement policy
        tolerance: Units returns may exceed sales by before failing (None = unbounded)

    Raises:
        NegativeDeltaUnderflow: If returns exceed sales by more than `tolerance`
    """
    prepared = PreparedSales()

    for fmt in sorted(set(formats), key=lambda f: f.value):
        sales = sales_by_format.get(fmt, FormatSales(format=fmt))
        _check_underflow(sales, tolerance, prepared.warnings)

        if policy == ReturnsPolicy.NET_BEFORE_TIERS:
            total_quantity = max(sales.sales_quantity - sales.returns_quantity, 0)
            total_revenue = max(sales.sales_revenue - sales.returns_revenue, ZERO)
        else:
            total_quantity = sales.sales_quantity
            total_revenue = sales.sales_revenue

        prepared.inputs[fmt] = FormatPeriodInput(
            format=fmt,
            total_quantity=total_quantity,
            total_revenue=total_revenue,
            sales_revenue=sales.sales_revenue,
            returns_quantity=sales.returns_quantity,
            returns_revenue=sales.returns_revenue,
        )

    return prepared


def calculate_format_royalty(
    period_input: FormatPeriodInput,
    schedule: RateSchedule,
    start_position: int = 0,
    policy: ReturnsPolicy = ReturnsPolicy.NET_BEFORE_TIERS,
    rounding: str | None = None,
) -> FormatBreakdown:
    """Run the tier crossover for one format and round its royalty once."""
    breakdowns = calculate_crossover(
        start_position=start_position,
        delta=period_input.total_quantity,
        tiers=schedule.tiers,
        unit_value=period_input.unit_value,
    )
    raw_royalty = total_royalty(breakdowns)
    format_royalty = quantize_money(raw_royalty, rounding)

    returns_deduction = ZERO
    if (
        policy == ReturnsPolicy.AFTER_TIERS
        and period_input.returns_revenue > 0
        and period_input.sales_revenue > 0
    ):
        raw_deduction = raw_royalty * period_input.returns_revenue / period_input.sales_revenue
        returns_deduction = min(quantize_money(raw_deduction, rounding), format_royalty)

    return FormatBreakdown(
        format=period_input.format,
        total_quantity=period_input.total_quantity,
        total_revenue=period_input.total_revenue,
        tier_breakdowns=tuple(breakdowns),
        format_royalty=format_royalty,
        returns_deduction=returns_deduction,
    )


def aggregate_formats(
    prepared: PreparedSales,
    schedules: Mapping[SalesFormat, RateSchedule],
    start_positions: Mapping[SalesFormat, int] | None = None,
    policy: ReturnsPolicy = ReturnsPolicy.NET_BEFORE_TIERS,
    rounding: str | None = None,
) -> FormatAggregate:
    """
    Calculate every format and sum to the title's gross for the period.

    Args:
        prepared: Output of prepare_format_inputs
        schedules: Validated schedule per format
        start_positions: Lifetime position per format (missing = 0, period mode)
        policy: Returns placement policy
        rounding: Decimal rounding constant (defaults to settings)
    """
    start_positions = start_positions or {}
    breakdowns: List[FormatBreakdown] = []

    for fmt, period_input in prepared.inputs.items():
        breakdowns.append(
            calculate_format_royalty(
                period_input,
                schedules[fmt],
                start_position=start_positions.get(fmt, 0),
                policy=policy,
                rounding=rounding,
            )
        )

    gross_format_royalty = sum((b.format_royalty for b in breakdowns), ZERO)

    if policy == ReturnsPolicy.NET_BEFORE_TIERS:
        # Already netted before the tier walk; reported for the statement only
        returns_deduction = sum((i.returns_revenue for i in prepared.inputs.values()), ZERO)
        gross_royalty = gross_format_royalty
    else:
        returns_deduction = sum((b.returns_deduction for b in breakdowns), ZERO)
        gross_royalty = gross_format_royalty - returns_deduction

    return FormatAggregate(
        breakdowns=tuple(breakdowns),
        gross_format_royalty=gross_format_royalty,
        returns_deduction=returns_deduction,
        gross_royalty=gross_royalty,
    )
