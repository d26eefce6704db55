"""
Tests for statement generation and persistence.
Each test runs against a fresh SQLite database.
"""

import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy import func, select

from app.core.config import get_settings
from app.models import (
    AdvanceLedgerEntry,
    Contract,
    LedgerEntryType,
    LifetimeSalesSnapshot,
    LifetimeSalesState,
    ReturnStatus,
    SalesFormat,
    Statement,
    TierCalculationMode,
)
from app.services.exceptions import (
    ContractNotFoundError,
    DuplicateStatementError,
    LifetimeStateError,
    NegativeDeltaUnderflow,
    ScheduleError,
    SplitError,
    StatementImmutableError,
)
from app.services.lifetime import TitleLockRegistry
from app.services.statements import (
    generate_statement,
    list_contact_statements,
    preview_statement,
)
from tests.factories import (
    LIFETIME_TIERS,
    Q1_END,
    Q1_START,
    Q2_END,
    Q2_START,
    TENANT_ID,
    add_author,
    add_contact,
    add_contract,
    add_sale,
    add_title,
)

PHYSICAL = SalesFormat.PHYSICAL


async def _count(db, model):
    return await db.scalar(select(func.count()).select_from(model))


async def _single_author_title(db, **contract_kwargs):
    contact = await add_contact(db)
    title = await add_title(db)
    await add_author(db, title, contact, "100", is_primary=True)
    contract = await add_contract(db, contact, title, **contract_kwargs)
    await db.commit()
    return contact, title, contract


class TestGenerateStatement:
    """Test generating a single author's statement."""

    async def test_period_mode_with_recoupment(self, session_factory):
        async with session_factory() as db:
            contact, title, contract = await _single_author_title(db, advance="2000", recouped="500")
            await add_sale(db, title, PHYSICAL, 1500, "15000", date(2026, 2, 10))
            await db.commit()

            statement = await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)

        assert statement.gross_royalty == Decimal("1750.00")
        assert statement.recoupment == Decimal("1500.00")
        assert statement.net_payable == Decimal("250.00")

        calc = statement.calculations
        assert calc["grossRoyalty"] == "1750.00"
        assert calc["netPayable"] == "250.00"
        assert "splitCalculation" not in calc
        assert "lifetimeContext" not in calc
        formats = {b["format"]: b for b in calc["formatBreakdowns"]}
        assert formats["physical"]["formatRoyalty"] == "1750.00"
        # Scheduled but unsold
        assert formats["ebook"]["totalQuantity"] == 0
        assert formats["ebook"]["tierBreakdowns"] == []

        async with session_factory() as db:
            stored = await db.get(Contract, contract.id)
            assert stored.advance_recouped == Decimal("2000.00")

            entries = (await db.execute(select(AdvanceLedgerEntry))).scalars().all()
            assert len(entries) == 1
            assert entries[0].entry_type == LedgerEntryType.RECOUPMENT
            assert entries[0].amount == Decimal("1500.00")
            assert entries[0].recouped_before == Decimal("500.00")
            assert entries[0].recouped_after == Decimal("2000.00")
            assert entries[0].statement_id == statement.id

    async def test_no_sales_gives_zero_statement(self, session_factory):
        async with session_factory() as db:
            contact, _, _ = await _single_author_title(db, advance="100")
            statement = await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)

        assert statement.gross_royalty == Decimal("0.00")
        assert statement.recoupment == Decimal("0")
        async with session_factory() as db:
            assert await _count(db, AdvanceLedgerEntry) == 0

    async def test_sales_outside_period_are_ignored(self, session_factory):
        async with session_factory() as db:
            contact, title, _ = await _single_author_title(db)
            await add_sale(db, title, PHYSICAL, 100, "1000", date(2025, 12, 31))
            await add_sale(db, title, PHYSICAL, 100, "1000", Q1_END)
            await add_sale(db, title, PHYSICAL, 100, "1000", Q2_START)
            await db.commit()

            statement = await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)

        assert statement.gross_royalty == Decimal("100.00")

    async def test_duplicate_is_rejected(self, session_factory):
        async with session_factory() as db:
            contact, title, contract = await _single_author_title(db, advance="10000")
            await add_sale(db, title, PHYSICAL, 1500, "15000", date(2026, 2, 10))
            await db.commit()
            await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)

        async with session_factory() as db:
            with pytest.raises(DuplicateStatementError):
                await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)

        async with session_factory() as db:
            assert await _count(db, Statement) == 1
            assert await _count(db, AdvanceLedgerEntry) == 1
            stored = await db.get(Contract, contract.id)
            assert stored.advance_recouped == Decimal("1750.00")

    async def test_statement_is_immutable(self, session_factory):
        async with session_factory() as db:
            contact, _, _ = await _single_author_title(db)
            statement = await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)

        async with session_factory() as db:
            stored = await db.get(Statement, statement.id)
            stored.net_payable = Decimal("999.99")
            with pytest.raises(StatementImmutableError):
                await db.flush()
            await db.rollback()

        async with session_factory() as db:
            stored = await db.get(Statement, statement.id)
            await db.delete(stored)
            with pytest.raises(StatementImmutableError):
                await db.flush()
            await db.rollback()

    async def test_missing_contract(self, session_factory):
        async with session_factory() as db:
            contact = await add_contact(db)
            await db.commit()

            with pytest.raises(ContractNotFoundError):
                await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)

    async def test_broken_tiers_persist_nothing(self, session_factory):
        gapped = [
            (PHYSICAL, 0, 999, "0.10"),
            (PHYSICAL, 2000, None, "0.15"),
        ]
        async with session_factory() as db:
            contact, title, _ = await _single_author_title(db, tiers=gapped)
            await add_sale(db, title, PHYSICAL, 10, "100", date(2026, 2, 10))
            await db.commit()

            with pytest.raises(ScheduleError):
                await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)

        async with session_factory() as db:
            assert await _count(db, Statement) == 0

    async def test_sold_format_without_tiers(self, session_factory):
        async with session_factory() as db:
            contact, title, _ = await _single_author_title(db, tiers=[(SalesFormat.EBOOK, 0, None, "0.25")])
            await add_sale(db, title, SalesFormat.AUDIOBOOK, 10, "100", date(2026, 2, 10))
            await db.commit()

            with pytest.raises(ScheduleError, match="audiobook"):
                await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)

    async def test_returns_beyond_tolerance(self, session_factory, monkeypatch):
        monkeypatch.setattr(get_settings(), "RETURNS_UNDERFLOW_TOLERANCE", 0)

        async with session_factory() as db:
            contact, title, _ = await _single_author_title(db)
            await add_sale(db, title, PHYSICAL, 5, "50", date(2026, 1, 10))
            await add_sale(db, title, PHYSICAL, -8, "-80", date(2026, 2, 10))
            await db.commit()

            with pytest.raises(NegativeDeltaUnderflow):
                await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)

    async def test_returns_exceeding_sales_warn(self, session_factory):
        async with session_factory() as db:
            contact, title, _ = await _single_author_title(db)
            await add_sale(db, title, PHYSICAL, 5, "50", date(2026, 1, 10))
            await add_sale(db, title, PHYSICAL, -8, "-80", date(2026, 2, 10))
            await db.commit()

            statement = await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)

        assert statement.gross_royalty == Decimal("0.00")
        assert len(statement.warnings) == 1
        assert statement.warnings[0]["code"] == "insufficient_data"
        assert statement.warnings[0]["format"] == "physical"


class TestReturns:
    """Test which returns reach a statement."""

    async def test_approved_return_is_deducted(self, session_factory):
        async with session_factory() as db:
            contact, title, _ = await _single_author_title(db)
            await add_sale(db, title, SalesFormat.EBOOK, 100, "1000", date(2026, 1, 10))
            await add_sale(
                db, title, SalesFormat.EBOOK, -10, "100", date(2026, 2, 10),
                return_status=ReturnStatus.APPROVED,
            )
            await db.commit()

            statement = await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)

        # Refund recorded as a positive amount still reduces revenue
        assert statement.gross_royalty == Decimal("225.00")
        assert Decimal(statement.calculations["returnsDeduction"]) == Decimal("100")
        formats = {b["format"]: b for b in statement.calculations["formatBreakdowns"]}
        assert formats["ebook"]["totalQuantity"] == 90

    @pytest.mark.parametrize("status", [ReturnStatus.PENDING, ReturnStatus.REJECTED])
    async def test_unapproved_return_is_ignored(self, session_factory, status):
        async with session_factory() as db:
            contact, title, _ = await _single_author_title(db)
            await add_sale(db, title, SalesFormat.EBOOK, 100, "1000", date(2026, 1, 10))
            await add_sale(db, title, SalesFormat.EBOOK, -10, "-100", date(2026, 2, 10), return_status=status)
            await db.commit()

            statement = await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)

        assert statement.gross_royalty == Decimal("250.00")
        assert Decimal(statement.calculations["returnsDeduction"]) == 0
        assert not statement.warnings

    async def test_sole_author_with_partial_ownership_fails(self, session_factory):
        async with session_factory() as db:
            contact = await add_contact(db)
            title = await add_title(db)
            await add_author(db, title, contact, "50", is_primary=True)
            await add_contract(db, contact, title)
            await add_sale(db, title, PHYSICAL, 100, "1000", date(2026, 1, 10))
            await db.commit()

            with pytest.raises(SplitError):
                await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)

        async with session_factory() as db:
            assert await _count(db, Statement) == 0


class TestLifetimeStatements:
    """Test lifetime tier escalation through generated statements."""

    async def test_crossover_and_continuation(self, session_factory):
        async with session_factory() as db:
            contact, title, _ = await _single_author_title(
                db, tiers=LIFETIME_TIERS, mode=TierCalculationMode.LIFETIME
            )
            await add_sale(db, title, PHYSICAL, 48000, "480000", date(2025, 6, 30))
            await add_sale(db, title, PHYSICAL, 5000, "50000", date(2026, 2, 10))
            await add_sale(db, title, PHYSICAL, 1000, "10000", date(2026, 5, 10))
            await db.commit()

            q1 = await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)
            q2 = await generate_statement(db, TENANT_ID, contact.id, Q2_START, Q2_END)

        assert q1.gross_royalty == Decimal("6500.00")
        context = q1.calculations["lifetimeContext"]
        assert context["lifetimeSalesBefore"] == 48000
        assert context["lifetimeSalesAfter"] == 53000
        assert Decimal(context["currentTierRate"]) == Decimal("0.15")
        assert context["nextTierThreshold"] is None
        tiers = q1.calculations["formatBreakdowns"][0]["tierBreakdowns"]
        assert [t["quantityInTier"] for t in tiers] == [2000, 3000]

        assert q2.gross_royalty == Decimal("1500.00")
        assert q2.calculations["lifetimeContext"]["lifetimeSalesBefore"] == 53000

    async def test_earlier_period_after_advance_fails(self, session_factory):
        async with session_factory() as db:
            contact, title, _ = await _single_author_title(
                db, tiers=LIFETIME_TIERS, mode=TierCalculationMode.LIFETIME
            )
            await db.commit()
            await generate_statement(db, TENANT_ID, contact.id, Q2_START, Q2_END)

        async with session_factory() as db:
            with pytest.raises(LifetimeStateError):
                await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)


class TestCoAuthors:
    """Test split statements for co-authored titles."""

    async def _co_authored(self, db, mode=TierCalculationMode.PERIOD, tiers=None):
        lead = await add_contact(db, "Lead Author")
        second = await add_contact(db, "Second Author")
        title = await add_title(db)
        await add_author(db, title, lead, "60", is_primary=True)
        await add_author(db, title, second, "40")
        lead_tiers = tiers or [(PHYSICAL, 0, None, "0.10")]
        await add_contract(db, lead, title, tiers=lead_tiers, mode=mode)
        # The co-author's own tiers never price the title
        await add_contract(db, second, title, tiers=[(PHYSICAL, 0, None, "0.50")], advance="100")
        await db.commit()
        return lead, second, title

    async def test_split_sixty_forty(self, session_factory):
        async with session_factory() as db:
            lead, second, title = await self._co_authored(db)
            await add_sale(db, title, PHYSICAL, 1000, "10000", date(2026, 2, 10))
            await db.commit()

            lead_statement = await generate_statement(db, TENANT_ID, lead.id, Q1_START, Q1_END)
        async with session_factory() as db:
            second_statement = await generate_statement(db, TENANT_ID, second.id, Q1_START, Q1_END)

        assert lead_statement.gross_royalty == Decimal("600.00")
        assert second_statement.gross_royalty == Decimal("400.00")
        assert second_statement.recoupment == Decimal("100.00")
        assert second_statement.net_payable == Decimal("300.00")

        split = second_statement.calculations["splitCalculation"]
        assert split["titleTotalRoyalty"] == "1000.00"
        assert Decimal(split["ownershipPercentage"]) == Decimal("40")
        assert split["isSplitCalculation"] is True

    async def test_co_authors_share_lifetime_window(self, session_factory):
        async with session_factory() as db:
            lead, second, title = await self._co_authored(
                db, mode=TierCalculationMode.LIFETIME, tiers=LIFETIME_TIERS
            )
            await add_sale(db, title, PHYSICAL, 48000, "480000", date(2025, 6, 30))
            await add_sale(db, title, PHYSICAL, 5000, "50000", date(2026, 2, 10))
            await db.commit()

        locks = TitleLockRegistry()
        async with session_factory() as db:
            lead_statement = await generate_statement(db, TENANT_ID, lead.id, Q1_START, Q1_END, locks=locks)
        async with session_factory() as db:
            second_statement = await generate_statement(db, TENANT_ID, second.id, Q1_START, Q1_END, locks=locks)

        lead_context = lead_statement.calculations["lifetimeContext"]
        second_context = second_statement.calculations["lifetimeContext"]
        assert lead_context["lifetimeSalesBefore"] == second_context["lifetimeSalesBefore"] == 48000
        assert lead_context["lifetimeSalesAfter"] == second_context["lifetimeSalesAfter"] == 53000
        assert lead_statement.gross_royalty == Decimal("3900.00")
        assert second_statement.gross_royalty == Decimal("2600.00")

        async with session_factory() as db:
            assert await _count(db, LifetimeSalesSnapshot) == 1
            state = (await db.execute(select(LifetimeSalesState))).scalar_one()
            assert state.quantity == 53000
            assert state.version == 1


class TestPreviewAndListing:
    async def test_preview_writes_nothing(self, session_factory):
        async with session_factory() as db:
            contact, title, _ = await _single_author_title(
                db, tiers=LIFETIME_TIERS, mode=TierCalculationMode.LIFETIME, advance="1000"
            )
            await add_sale(db, title, PHYSICAL, 5000, "50000", date(2026, 2, 10))
            await db.commit()

            preview = await preview_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)

        assert preview.result.calculation.gross_royalty == Decimal("5000.00")
        assert preview.result.recoupment.this_period_recoupment == Decimal("1000")

        async with session_factory() as db:
            assert await _count(db, Statement) == 0
            assert await _count(db, LifetimeSalesState) == 0
            assert await _count(db, AdvanceLedgerEntry) == 0

    async def test_list_newest_first(self, session_factory):
        async with session_factory() as db:
            contact, _, _ = await _single_author_title(db)
            await generate_statement(db, TENANT_ID, contact.id, Q1_START, Q1_END)
        async with session_factory() as db:
            await generate_statement(db, TENANT_ID, contact.id, Q2_START, Q2_END)

        async with session_factory() as db:
            statements = await list_contact_statements(db, contact.id, TENANT_ID)

        assert [s.period_start for s in statements] == [Q2_START, Q1_START]
