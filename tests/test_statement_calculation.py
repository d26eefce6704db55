"""
Unit tests for the pure statement calculation.
No database: inputs are built by hand.
"""

import uuid

import pytest
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from app.models.contract import SalesFormat, TierCalculationMode
from app.services.exceptions import ScheduleError, SplitError
from app.services.formats import FormatSales, ReturnsPolicy
from app.services.lifetime import LifetimeWindow
from app.services.rate_schedule import Tier, resolve_schedule
from app.services.splits import AuthorOwnership
from app.services.statements import StatementInputs, calculate_statement

AUTHOR = uuid.UUID("00000000-0000-4000-8000-0000000000a1")
CO_AUTHOR = uuid.UUID("00000000-0000-4000-8000-0000000000b2")

PHYSICAL = resolve_schedule(
    [
        Tier(min_quantity=0, max_quantity=999, rate=Decimal("0.10")),
        Tier(min_quantity=1000, max_quantity=None, rate=Decimal("0.15")),
    ],
    SalesFormat.PHYSICAL,
)
LIFETIME = resolve_schedule(
    [
        Tier(min_quantity=0, max_quantity=49999, rate=Decimal("0.10")),
        Tier(min_quantity=50000, max_quantity=None, rate=Decimal("0.15")),
    ],
    SalesFormat.PHYSICAL,
)


def _sales(quantity, revenue):
    return {
        SalesFormat.PHYSICAL: FormatSales(
            format=SalesFormat.PHYSICAL,
            sales_quantity=quantity,
            sales_revenue=Decimal(revenue),
        )
    }


def _inputs(**overrides):
    values = dict(
        period_start=date(2026, 1, 1),
        period_end=date(2026, 3, 31),
        contact_id=AUTHOR,
        sales=_sales(1500, "15000"),
        schedules={SalesFormat.PHYSICAL: PHYSICAL},
        authors=[AuthorOwnership(AUTHOR, Decimal("100"), True)],
        rounding=ROUND_HALF_UP,
    )
    values.update(overrides)
    return StatementInputs(**values)


class TestCalculateStatement:
    """Test the assembled calculation."""

    def test_period_mode_with_advance(self):
        result = calculate_statement(
            _inputs(advance_amount=Decimal("2000.00"), advance_recouped=Decimal("500.00"))
        )
        calc = result.calculation

        assert calc.gross_royalty == Decimal("1750.00")
        assert calc.advance_recoupment.this_periods_recoupment == Decimal("1500.00")
        assert calc.advance_recoupment.remaining_advance == Decimal("0.00")
        assert calc.net_payable == Decimal("250.00")
        assert [t.quantity_in_tier for t in calc.format_breakdowns[0].tier_breakdowns] == [1000, 500]

    def test_optional_blocks_omitted_for_single_author(self):
        data = calculate_statement(_inputs()).calculation.to_json()

        assert "splitCalculation" not in data
        assert "lifetimeContext" not in data
        assert data["grossRoyalty"] == "1750.00"
        assert data["period"] == {"startDate": "2026-01-01", "endDate": "2026-03-31"}
        assert Decimal(data["advanceRecoupment"]["thisPeriodsRecoupment"]) == 0
        # Open-ended top tier is serialized as null, not dropped
        assert data["formatBreakdowns"][0]["tierBreakdowns"][1]["tierMaxQuantity"] is None

    def test_no_authors_is_sole_ownership(self):
        result = calculate_statement(_inputs(authors=[]))
        assert result.calculation.gross_royalty == Decimal("1750.00")
        assert result.calculation.split_calculation is None

    def test_split_for_co_authors(self):
        result = calculate_statement(
            _inputs(
                sales=_sales(1000, "10000"),
                schedules={
                    SalesFormat.PHYSICAL: resolve_schedule(
                        [Tier(min_quantity=0, max_quantity=None, rate=Decimal("0.10"))],
                        SalesFormat.PHYSICAL,
                    )
                },
                authors=[
                    AuthorOwnership(AUTHOR, Decimal("60"), True),
                    AuthorOwnership(CO_AUTHOR, Decimal("40"), False),
                ],
                contact_id=CO_AUTHOR,
            )
        )
        split = result.calculation.split_calculation

        assert result.calculation.gross_royalty == Decimal("400.00")
        assert split.title_total_royalty == Decimal("1000.00")
        assert split.ownership_percentage == Decimal("40")
        assert [s.amount for s in split.author_shares] == [Decimal("600.00"), Decimal("400.00")]
        assert result.calculation.to_json()["splitCalculation"]["isSplitCalculation"] is True

    def test_not_an_author(self):
        with pytest.raises(SplitError):
            calculate_statement(
                _inputs(authors=[AuthorOwnership(CO_AUTHOR, Decimal("100"), True)])
            )

    def test_sole_author_must_own_whole_title(self):
        with pytest.raises(SplitError, match="100"):
            calculate_statement(
                _inputs(authors=[AuthorOwnership(AUTHOR, Decimal("50"), True)])
            )

    def test_tier_detail_has_fixed_scale(self):
        result = calculate_statement(
            _inputs(
                sales=_sales(3, "100"),
                schedules={
                    SalesFormat.PHYSICAL: resolve_schedule(
                        [Tier(min_quantity=0, max_quantity=None, rate=Decimal("0.10"))],
                        SalesFormat.PHYSICAL,
                    )
                },
            )
        )
        data = result.calculation.to_json()
        breakdown = data["formatBreakdowns"][0]

        # Unit value 33.333... repeats; detail is shown to 6 places, totals to cents
        assert breakdown["tierBreakdowns"][0]["royaltyEarned"] == "10.000000"
        assert breakdown["formatRoyalty"] == "10.00"
        assert data["grossRoyalty"] == "10.00"

    def test_sold_format_without_schedule(self):
        sales = dict(_sales(10, "100"))
        sales[SalesFormat.AUDIOBOOK] = FormatSales(
            format=SalesFormat.AUDIOBOOK, sales_quantity=1, sales_revenue=Decimal("20")
        )
        with pytest.raises(ScheduleError, match="audiobook"):
            calculate_statement(_inputs(sales=sales))

    def test_lifetime_context(self):
        window = LifetimeWindow(
            format=SalesFormat.PHYSICAL,
            lifetime_sales_before=48000,
            lifetime_sales_after=53000,
            lifetime_revenue_before=Decimal("480000"),
            lifetime_revenue_after=Decimal("530000"),
        )
        result = calculate_statement(
            _inputs(
                sales=_sales(5000, "50000"),
                schedules={SalesFormat.PHYSICAL: LIFETIME},
                tier_mode=TierCalculationMode.LIFETIME,
                lifetime_windows={SalesFormat.PHYSICAL: window},
            )
        )
        context = result.calculation.lifetime_context

        assert result.calculation.gross_royalty == Decimal("6500.00")
        assert context.lifetime_sales_before == 48000
        assert context.lifetime_sales_after == 53000
        assert context.current_tier_rate == Decimal("0.15")
        assert context.next_tier_threshold is None
        assert len(context.formats) == 1

        data = result.calculation.to_json()["lifetimeContext"]
        assert data["tierCalculationMode"] == "lifetime"
        assert data["nextTierThreshold"] is None

    def test_period_mode_ignores_windows(self):
        window = LifetimeWindow(
            format=SalesFormat.PHYSICAL,
            lifetime_sales_before=48000,
            lifetime_sales_after=53000,
            lifetime_revenue_before=Decimal("0"),
            lifetime_revenue_after=Decimal("0"),
        )
        result = calculate_statement(_inputs(lifetime_windows={SalesFormat.PHYSICAL: window}))
        assert result.calculation.gross_royalty == Decimal("1750.00")
        assert result.calculation.lifetime_context is None

    def test_after_tiers_returns(self):
        sales = {
            SalesFormat.PHYSICAL: FormatSales(
                format=SalesFormat.PHYSICAL,
                sales_quantity=100,
                sales_revenue=Decimal("1000"),
                returns_quantity=10,
                returns_revenue=Decimal("100"),
            )
        }
        result = calculate_statement(_inputs(sales=sales, returns_policy=ReturnsPolicy.AFTER_TIERS))

        assert result.calculation.returns_deduction == Decimal("10.00")
        assert result.calculation.gross_royalty == Decimal("90.00")
        assert result.warnings == []
