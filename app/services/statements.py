"""
Statement assembler.

Builds one author's StatementCalculation for one period and persists it:

1. Resolve the author's active contract, the title's authors and the
   primary author's contract (its tiers and tier mode price the title)
2. Aggregate the title's sales and returns per format
3. Under the title lock, read or advance the lifetime window (lifetime mode)
4. Run the tier crossover per format and apply the returns policy
5. Split the title royalty among co-authors
6. Recoup the author's outstanding advance from their share
7. Insert the statement, the RECOUPMENT ledger entry and the contract's new
   advance_recouped in one transaction

calculate_statement() is the pure part (steps 4-6) and does no I/O.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.models.advance_ledger import AdvanceLedgerEntry, LedgerEntryType
from app.models.contract import Contract, ContractStatus, SalesFormat, TierCalculationMode
from app.models.contract_tier import ContractTier
from app.models.sales_record import SalesRecord
from app.models.statement import Statement, StatementStatus
from app.models.title_author import TitleAuthor
from app.schemas.royalties import (
    AdvanceRecoupmentSchema,
    AuthorShareSchema,
    FormatBreakdownSchema,
    LifetimeContextSchema,
    LifetimeFormatContext,
    SplitCalculationSchema,
    StatementCalculation,
    StatementPeriod,
    TierBreakdownSchema,
)
from app.services.exceptions import (
    ContractNotFoundError,
    DuplicateStatementError,
    InsufficientDataWarning,
    PersistenceError,
    ScheduleError,
    SplitError,
)
from app.services.formats import (
    FormatAggregate,
    FormatSales,
    ReturnsPolicy,
    aggregate_formats,
    aggregate_sales,
    prepare_format_inputs,
)
from app.services.lifetime import (
    LifetimeWindow,
    TitleLockRegistry,
    advance_title,
    advisory_lock,
    peek_title,
    tier_position,
    title_locks,
)
from app.services.money import quantize_detail, rounding_mode, to_decimal
from app.services.rate_schedule import RateSchedule, resolve_schedule, scheduled_formats
from app.services.recoupment import RecoupmentResult, apply_recoupment
from app.services.splits import AuthorOwnership, allocate_split, validate_ownership

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatementInputs:
    """Everything calculate_statement needs, already loaded."""
    period_start: date
    period_end: date
    contact_id: UUID
    sales: Mapping[SalesFormat, FormatSales]
    schedules: Mapping[SalesFormat, RateSchedule]
    authors: Sequence[AuthorOwnership] = ()
    advance_amount: Decimal = Decimal("0")
    advance_recouped: Decimal = Decimal("0")
    tier_mode: TierCalculationMode = TierCalculationMode.PERIOD
    lifetime_windows: Mapping[SalesFormat, LifetimeWindow] = field(default_factory=dict)
    returns_policy: ReturnsPolicy = ReturnsPolicy.NET_BEFORE_TIERS
    underflow_tolerance: Optional[int] = None
    rounding: Optional[str] = None


@dataclass(frozen=True)
class StatementResult:
    calculation: StatementCalculation
    aggregate: FormatAggregate
    recoupment: RecoupmentResult
    warnings: List[InsufficientDataWarning]

    @property
    def title_total_royalty(self) -> Decimal:
        return self.aggregate.gross_royalty


@dataclass(frozen=True)
class StatementContext:
    """Contracts and ownership resolved for one author's statement."""
    author_contract: Contract
    pricing_contract: Contract
    authors: List[AuthorOwnership]
    tier_rows: List[ContractTier]

    @property
    def title_id(self) -> UUID:
        return self.author_contract.title_id


@dataclass(frozen=True)
class StatementPreview:
    context: StatementContext
    result: StatementResult


def statement_formats(
    sales: Mapping[SalesFormat, FormatSales],
    tier_rows: Sequence,
) -> set[SalesFormat]:
    """Formats a statement reports: anything sold, returned or scheduled."""
    return set(sales) | scheduled_formats(tier_rows)


def resolve_schedules(tier_rows: Sequence, formats: set[SalesFormat]) -> Dict[SalesFormat, RateSchedule]:
    return {fmt: resolve_schedule(tier_rows, fmt) for fmt in formats}


def _author_gross(
    inputs: StatementInputs,
    title_total: Decimal,
    rounding: str,
) -> tuple[Decimal, Optional[SplitCalculationSchema]]:
    authors = list(inputs.authors)
    if not authors:
        return title_total, None

    validate_ownership(authors)
    if len(authors) == 1:
        if authors[0].contact_id != inputs.contact_id:
            raise SplitError(f"Contact {inputs.contact_id} is not an author of this title")
        return title_total, None

    shares = allocate_split(title_total, authors, rounding)
    own = next((s for s in shares if s.contact_id == inputs.contact_id), None)
    if own is None:
        raise SplitError(f"Contact {inputs.contact_id} is not an author of this title")

    split = SplitCalculationSchema(
        title_total_royalty=title_total,
        ownership_percentage=own.ownership_percentage,
        author_shares=[
            AuthorShareSchema(
                contact_id=s.contact_id,
                ownership_percentage=s.ownership_percentage,
                is_primary=s.is_primary,
                amount=s.amount,
            )
            for s in shares
        ],
    )
    return own.amount, split


def _lifetime_context(
    windows: Mapping[SalesFormat, LifetimeWindow],
    schedules: Mapping[SalesFormat, RateSchedule],
) -> Optional[LifetimeContextSchema]:
    contexts = []
    for fmt in sorted(windows, key=lambda f: f.value):
        window = windows[fmt]
        position = tier_position(schedules[fmt], window.lifetime_sales_after)
        contexts.append(
            LifetimeFormatContext(
                format=fmt,
                lifetime_sales_before=window.lifetime_sales_before,
                lifetime_sales_after=window.lifetime_sales_after,
                lifetime_revenue_before=window.lifetime_revenue_before,
                lifetime_revenue_after=window.lifetime_revenue_after,
                current_tier_rate=position.current_tier_rate,
                next_tier_threshold=position.next_tier_threshold,
                units_to_next_tier=position.units_to_next_tier,
            )
        )
    if not contexts:
        return None

    lead = max(contexts, key=lambda c: c.lifetime_sales_after)
    return LifetimeContextSchema(
        format=lead.format,
        lifetime_sales_before=lead.lifetime_sales_before,
        lifetime_sales_after=lead.lifetime_sales_after,
        lifetime_revenue_before=lead.lifetime_revenue_before,
        lifetime_revenue_after=lead.lifetime_revenue_after,
        current_tier_rate=lead.current_tier_rate,
        next_tier_threshold=lead.next_tier_threshold,
        units_to_next_tier=lead.units_to_next_tier,
        formats=contexts,
    )


def calculate_statement(inputs: StatementInputs) -> StatementResult:
    """
    Calculate one author's statement from loaded inputs.

    Raises:
        ScheduleError: If a reported format has no valid schedule
        NegativeDeltaUnderflow: If returns exceed sales beyond the tolerance
        SplitError: If ownership is invalid or the contact is not an author
    """
    rounding = rounding_mode(None) if inputs.rounding is None else inputs.rounding
    formats = set(inputs.sales) | set(inputs.schedules)

    missing = sorted(f.value for f in formats if f not in inputs.schedules)
    if missing:
        raise ScheduleError(f"No tiers configured for format(s): {', '.join(missing)}")

    prepared = prepare_format_inputs(
        inputs.sales,
        formats,
        inputs.returns_policy,
        inputs.underflow_tolerance,
    )

    is_lifetime = TierCalculationMode(inputs.tier_mode) == TierCalculationMode.LIFETIME
    start_positions = (
        {fmt: w.start_position for fmt, w in inputs.lifetime_windows.items()}
        if is_lifetime else {}
    )

    aggregate = aggregate_formats(
        prepared,
        inputs.schedules,
        start_positions=start_positions,
        policy=inputs.returns_policy,
        rounding=rounding,
    )

    author_gross, split = _author_gross(inputs, aggregate.gross_royalty, rounding)
    recoupment = apply_recoupment(author_gross, inputs.advance_amount, inputs.advance_recouped)

    calculation = StatementCalculation(
        period=StatementPeriod(start_date=inputs.period_start, end_date=inputs.period_end),
        format_breakdowns=[
            FormatBreakdownSchema(
                format=b.format,
                total_quantity=b.total_quantity,
                total_revenue=b.total_revenue,
                tier_breakdowns=[
                    TierBreakdownSchema(
                        tier_min_quantity=t.tier_min_quantity,
                        tier_max_quantity=t.tier_max_quantity,
                        tier_rate=t.tier_rate,
                        quantity_in_tier=t.quantity_in_tier,
                        royalty_earned=quantize_detail(t.royalty_earned, rounding),
                    )
                    for t in b.tier_breakdowns
                ],
                format_royalty=b.format_royalty,
            )
            for b in aggregate.breakdowns
        ],
        returns_deduction=aggregate.returns_deduction,
        gross_royalty=author_gross,
        advance_recoupment=AdvanceRecoupmentSchema(
            original_advance=recoupment.original_advance,
            previously_recouped=recoupment.previously_recouped,
            this_periods_recoupment=recoupment.this_period_recoupment,
            remaining_advance=recoupment.remaining_advance,
        ),
        net_payable=recoupment.net_payable,
        split_calculation=split,
        lifetime_context=_lifetime_context(inputs.lifetime_windows, inputs.schedules) if is_lifetime else None,
    )

    return StatementResult(
        calculation=calculation,
        aggregate=aggregate,
        recoupment=recoupment,
        warnings=list(prepared.warnings),
    )


# Loading

async def _active_contract(
    db: AsyncSession,
    tenant_id: UUID,
    contact_id: UUID,
    title_id: Optional[UUID] = None,
) -> Optional[Contract]:
    query = select(Contract).where(
        Contract.tenant_id == tenant_id,
        Contract.contact_id == contact_id,
        Contract.status == ContractStatus.ACTIVE,
    )
    if title_id is not None:
        query = query.where(Contract.title_id == title_id)
    result = await db.execute(query.order_by(Contract.created_at, Contract.id).limit(1))
    return result.scalar_one_or_none()


async def load_context(
    db: AsyncSession,
    tenant_id: UUID,
    contact_id: UUID,
    contract_id: Optional[UUID] = None,
) -> StatementContext:
    """
    Resolve the contracts and ownership records for an author's statement.

    Raises:
        ContractNotFoundError: If the author or the title's primary author
            has no active contract
    """
    if contract_id is not None:
        contract = await db.get(Contract, contract_id)
        if (
            contract is None
            or contract.tenant_id != tenant_id
            or contract.contact_id != contact_id
            or ContractStatus(contract.status) != ContractStatus.ACTIVE
        ):
            raise ContractNotFoundError(
                f"Active contract {contract_id} not found for contact {contact_id}"
            )
    else:
        contract = await _active_contract(db, tenant_id, contact_id)
        if contract is None:
            raise ContractNotFoundError(f"No active contract found for contact {contact_id}")

    result = await db.execute(
        select(TitleAuthor)
        .where(TitleAuthor.title_id == contract.title_id)
        .order_by(TitleAuthor.contact_id)
    )
    links = list(result.scalars().all())
    authors = [
        AuthorOwnership(
            contact_id=link.contact_id,
            ownership_percentage=to_decimal(link.ownership_percentage),
            is_primary=link.is_primary,
        )
        for link in links
    ]

    primary = next((a for a in authors if a.is_primary), None)
    if primary is None and authors:
        primary = sorted(authors, key=lambda a: (-a.ownership_percentage, str(a.contact_id)))[0]

    pricing_contract = contract
    if primary is not None and primary.contact_id != contact_id:
        pricing_contract = await _active_contract(db, tenant_id, primary.contact_id, contract.title_id)
        if pricing_contract is None:
            raise ContractNotFoundError(
                f"Primary author {primary.contact_id} of title {contract.title_id} has no active contract"
            )

    tiers = await db.execute(
        select(ContractTier)
        .where(ContractTier.contract_id == pricing_contract.id)
        .order_by(ContractTier.format, ContractTier.min_quantity)
    )

    return StatementContext(
        author_contract=contract,
        pricing_contract=pricing_contract,
        authors=authors,
        tier_rows=list(tiers.scalars().all()),
    )


async def load_period_sales(
    db: AsyncSession,
    tenant_id: UUID,
    title_id: UUID,
    period_start: date,
    period_end: date,
) -> Dict[SalesFormat, FormatSales]:
    """Sales and approved returns of a title in [period_start, period_end], per format."""
    result = await db.execute(
        select(SalesRecord).where(
            SalesRecord.tenant_id == tenant_id,
            SalesRecord.title_id == title_id,
            SalesRecord.sale_date >= period_start,
            SalesRecord.sale_date <= period_end,
            SalesRecord.counts_toward_royalties(),
        )
    )
    return aggregate_sales(result.scalars().all())


def _policy_settings() -> tuple[ReturnsPolicy, Optional[int], str]:
    settings = get_settings()
    return (
        ReturnsPolicy(settings.RETURNS_POLICY),
        settings.RETURNS_UNDERFLOW_TOLERANCE,
        rounding_mode(settings.ROYALTY_ROUNDING),
    )


def _period_totals(
    sales: Mapping[SalesFormat, FormatSales],
    formats: set[SalesFormat],
    policy: ReturnsPolicy,
    tolerance: Optional[int],
):
    prepared = prepare_format_inputs(sales, formats, policy, tolerance)
    return {fmt: (i.total_quantity, i.total_revenue) for fmt, i in prepared.inputs.items()}


def _build_inputs(
    context: StatementContext,
    contact_id: UUID,
    period_start: date,
    period_end: date,
    sales: Mapping[SalesFormat, FormatSales],
    schedules: Mapping[SalesFormat, RateSchedule],
    windows: Mapping[SalesFormat, LifetimeWindow],
    policy: ReturnsPolicy,
    tolerance: Optional[int],
    rounding: str,
) -> StatementInputs:
    return StatementInputs(
        period_start=period_start,
        period_end=period_end,
        contact_id=contact_id,
        sales=sales,
        schedules=schedules,
        authors=context.authors,
        advance_amount=to_decimal(context.author_contract.advance_amount),
        advance_recouped=to_decimal(context.author_contract.advance_recouped),
        tier_mode=TierCalculationMode(context.pricing_contract.tier_calculation_mode),
        lifetime_windows=windows,
        returns_policy=policy,
        underflow_tolerance=tolerance,
        rounding=rounding,
    )


async def preview_statement(
    db: AsyncSession,
    tenant_id: UUID,
    contact_id: UUID,
    period_start: date,
    period_end: date,
    contract_id: Optional[UUID] = None,
) -> StatementPreview:
    """Calculate an author's statement without writing anything."""
    policy, tolerance, rounding = _policy_settings()
    context = await load_context(db, tenant_id, contact_id, contract_id)

    sales = await load_period_sales(db, tenant_id, context.title_id, period_start, period_end)
    formats = statement_formats(sales, context.tier_rows)
    schedules = resolve_schedules(context.tier_rows, formats)

    windows: Dict[SalesFormat, LifetimeWindow] = {}
    if context.pricing_contract.is_lifetime_mode:
        windows = await peek_title(
            db,
            tenant_id,
            context.title_id,
            period_start,
            period_end,
            _period_totals(sales, formats, policy, tolerance),
            include_returns=policy == ReturnsPolicy.NET_BEFORE_TIERS,
        )

    result = calculate_statement(
        _build_inputs(
            context, contact_id, period_start, period_end,
            sales, schedules, windows, policy, tolerance, rounding,
        )
    )
    return StatementPreview(context=context, result=result)


async def _statement_exists(
    db: AsyncSession,
    tenant_id: UUID,
    contact_id: UUID,
    period_start: date,
    period_end: date,
) -> bool:
    result = await db.execute(
        select(Statement.id).where(
            Statement.tenant_id == tenant_id,
            Statement.contact_id == contact_id,
            Statement.period_start == period_start,
            Statement.period_end == period_end,
        )
    )
    return result.first() is not None


async def generate_statement(
    db: AsyncSession,
    tenant_id: UUID,
    contact_id: UUID,
    period_start: date,
    period_end: date,
    contract_id: Optional[UUID] = None,
    batch_run_id: Optional[UUID] = None,
    locks: TitleLockRegistry = title_locks,
) -> Statement:
    """
    Generate and persist one author's statement for a period.

    The session's transaction is committed here, while the title lock is
    held, so the lifetime window and the statement land together. Nothing
    is written if any step fails.

    Args:
        db: A session with no pending work
        tenant_id: Tenant UUID
        contact_id: Author (contact) UUID
        period_start: First day of the period (inclusive)
        period_end: Last day of the period (inclusive)
        contract_id: Author contract to use (default: first active contract)
        batch_run_id: StatementRun that requested this statement, if any
        locks: Per-title lock registry

    Returns:
        The persisted Statement

    Raises:
        DuplicateStatementError: If a statement already exists for the key
        ContractNotFoundError, ScheduleError, SplitError,
        NegativeDeltaUnderflow, LifetimeStateError: Calculation failures
        PersistenceError: If the database fails
    """
    policy, tolerance, rounding = _policy_settings()

    try:
        context = await load_context(db, tenant_id, contact_id, contract_id)
        title_id = context.title_id

        async with locks.hold(tenant_id, title_id, period_start, period_end):
            await advisory_lock(db, tenant_id, title_id, period_start, period_end)

            sales = await load_period_sales(db, tenant_id, title_id, period_start, period_end)
            formats = statement_formats(sales, context.tier_rows)
            schedules = resolve_schedules(context.tier_rows, formats)

            windows: Dict[SalesFormat, LifetimeWindow] = {}
            if context.pricing_contract.is_lifetime_mode:
                windows = await advance_title(
                    db,
                    tenant_id,
                    title_id,
                    period_start,
                    period_end,
                    _period_totals(sales, formats, policy, tolerance),
                    include_returns=policy == ReturnsPolicy.NET_BEFORE_TIERS,
                )

            result = calculate_statement(
                _build_inputs(
                    context, contact_id, period_start, period_end,
                    sales, schedules, windows, policy, tolerance, rounding,
                )
            )
            calculation = result.calculation
            recoupment = result.recoupment

            statement = Statement(
                tenant_id=tenant_id,
                contact_id=contact_id,
                contract_id=context.author_contract.id,
                title_id=title_id,
                statement_run_id=batch_run_id,
                period_start=period_start,
                period_end=period_end,
                status=StatementStatus.DRAFT,
                gross_royalty=calculation.gross_royalty,
                recoupment=recoupment.this_period_recoupment,
                net_payable=calculation.net_payable,
                calculations=calculation.to_json(),
                warnings=[w.to_dict() for w in result.warnings],
            )
            db.add(statement)
            # Insert-or-fail on the statement key
            await db.flush()

            if recoupment.this_period_recoupment > 0:
                author_contract = context.author_contract
                db.add(
                    AdvanceLedgerEntry(
                        tenant_id=tenant_id,
                        contact_id=contact_id,
                        contract_id=author_contract.id,
                        entry_type=LedgerEntryType.RECOUPMENT,
                        amount=recoupment.this_period_recoupment,
                        recouped_before=recoupment.previously_recouped,
                        recouped_after=recoupment.recouped_after,
                        statement_id=statement.id,
                        description=f"Recoupment for {period_start} to {period_end}",
                    )
                )
                author_contract.advance_recouped = recoupment.recouped_after

            await db.commit()

    except IntegrityError as e:
        await db.rollback()
        if await _statement_exists(db, tenant_id, contact_id, period_start, period_end):
            logger.warning(
                f"Statement already exists for contact {contact_id} ({period_start} to {period_end})"
            )
            raise DuplicateStatementError(
                f"Statement already generated for contact {contact_id} "
                f"for {period_start} to {period_end}"
            ) from e
        raise PersistenceError(f"Failed to persist statement: {e.orig}") from e
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Failed to persist statement: {e}") from e
    except Exception:
        await db.rollback()
        raise

    for warning in result.warnings:
        logger.warning(f"Statement {statement.id}: {warning.message}")
    logger.info(
        f"Generated statement {statement.id} for contact {contact_id}: "
        f"gross={calculation.gross_royalty} recouped={recoupment.this_period_recoupment} "
        f"net={calculation.net_payable}"
    )
    return statement


async def get_statement(db: AsyncSession, statement_id: UUID) -> Optional[Statement]:
    return await db.get(Statement, statement_id)


async def list_contact_statements(
    db: AsyncSession,
    contact_id: UUID,
    tenant_id: Optional[UUID] = None,
) -> List[Statement]:
    """Statements of one contact, newest period first."""
    query = select(Statement).where(Statement.contact_id == contact_id)
    if tenant_id is not None:
        query = query.where(Statement.tenant_id == tenant_id)
    result = await db.execute(query.order_by(Statement.period_end.desc(), Statement.created_at.desc()))
    return list(result.scalars().all())
