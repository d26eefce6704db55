"""
Royalties Router

Handles statement runs, statement previews, persisted statements and
lifetime sales positions.
"""

import logging
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.database import get_db, get_session_factory
from app.models.contract import Contract, ContractStatus, SalesFormat
from app.models.contract_tier import ContractTier
from app.models.statement import Statement
from app.models.statement_run import StatementRun
from app.models.title_author import TitleAuthor
from app.schemas.royalties import (
    AuthorStatementResult,
    LifetimeStateResponse,
    StatementPreviewRequest,
    StatementPreviewResponse,
    StatementResponse,
    StatementRunCreate,
    StatementRunResponse,
    StatementWarning,
    StatementsListResponse,
    TitleLifetimeResponse,
)
from app.services.batch import get_statement_run, run_statement_batch
from app.services.exceptions import ContractNotFoundError, RoyaltyEngineError, ScheduleError
from app.services.lifetime import get_title_states, tier_position
from app.services.rate_schedule import resolve_schedule
from app.services.statements import get_statement, list_contact_statements, preview_statement

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/statement-runs", tags=["royalties"])
statements_router = APIRouter(prefix="/statements", tags=["royalties"])
contacts_router = APIRouter(prefix="/contacts", tags=["royalties"])
titles_router = APIRouter(prefix="/titles", tags=["royalties"])


async def verify_admin_token(x_admin_token: Annotated[str, Header()]) -> str:
    """Verify the admin token from header."""
    if x_admin_token != settings.ADMIN_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
        )
    return x_admin_token


def _run_response(run: StatementRun) -> StatementRunResponse:
    return StatementRunResponse(
        run_id=run.id,
        tenant_id=run.tenant_id,
        period_start=run.period_start,
        period_end=run.period_end,
        status=run.status,
        success_count=run.success_count,
        skipped_count=run.skipped_count,
        failed_count=run.failed_count,
        results=[AuthorStatementResult.model_validate(r) for r in (run.results or [])],
        error_message=run.error_message,
        created_at=run.created_at,
        completed_at=run.completed_at,
    )


def _statement_response(statement: Statement) -> StatementResponse:
    return StatementResponse(
        id=statement.id,
        tenant_id=statement.tenant_id,
        contact_id=statement.contact_id,
        contract_id=statement.contract_id,
        title_id=statement.title_id,
        statement_run_id=statement.statement_run_id,
        period_start=statement.period_start,
        period_end=statement.period_end,
        status=statement.status,
        gross_royalty=statement.gross_royalty,
        recoupment=statement.recoupment,
        net_payable=statement.net_payable,
        calculations=statement.calculations,
        warnings=statement.warnings or [],
        created_at=statement.created_at,
    )


@router.post("", response_model=StatementRunResponse)
async def create_statement_run(
    data: StatementRunCreate,
    session_factory: Annotated[async_sessionmaker, Depends(get_session_factory)],
    _token: Annotated[str, Depends(verify_admin_token)],
) -> StatementRunResponse:
    """
    Generate statements for a list of authors and one period.

    Each author is processed independently:
    1. Resolves the author's active contract and the title's pricing contract
    2. Advances the title's lifetime sales once (lifetime mode)
    3. Calculates, splits and recoups
    4. Persists the statement with its ledger entry

    Duplicates are reported as skipped; failures do not stop the run.
    """
    run = await run_statement_batch(data, session_factory=session_factory)
    return _run_response(run)


@router.get("/{run_id}", response_model=StatementRunResponse)
async def get_statement_run_by_id(
    run_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    _token: Annotated[str, Depends(verify_admin_token)],
) -> StatementRunResponse:
    """Get a statement run with its per-author results."""
    run = await get_statement_run(db, run_id)
    if not run:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Statement run {run_id} not found",
        )
    return _run_response(run)


@statements_router.post("/preview", response_model=StatementPreviewResponse)
async def preview(
    data: StatementPreviewRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    _token: Annotated[str, Depends(verify_admin_token)],
) -> StatementPreviewResponse:
    """
    Calculate an author's statement without persisting it.

    Lifetime state is read, never advanced; the advance is not recouped.
    """
    try:
        result = await preview_statement(
            db,
            tenant_id=data.tenant_id,
            contact_id=data.contact_id,
            period_start=data.period_start,
            period_end=data.period_end,
            contract_id=data.contract_id,
        )
    except ContractNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except RoyaltyEngineError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": e.code, "message": str(e)},
        )

    return StatementPreviewResponse(
        contact_id=data.contact_id,
        contract_id=result.context.author_contract.id,
        title_id=result.context.title_id,
        calculation=result.result.calculation.to_json(),
        warnings=[StatementWarning.model_validate(w.to_dict()) for w in result.result.warnings],
    )


@statements_router.get("/{statement_id}", response_model=StatementResponse)
async def get_statement_by_id(
    statement_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    _token: Annotated[str, Depends(verify_admin_token)],
) -> StatementResponse:
    """Get a persisted statement with its full calculation."""
    statement = await get_statement(db, statement_id)
    if not statement:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Statement {statement_id} not found",
        )
    return _statement_response(statement)


@contacts_router.get("/{contact_id}/statements", response_model=StatementsListResponse)
async def get_contact_statements(
    contact_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    _token: Annotated[str, Depends(verify_admin_token)],
    tenant_id: Optional[UUID] = None,
) -> StatementsListResponse:
    """List a contact's statements, newest period first."""
    statements = await list_contact_statements(db, contact_id, tenant_id)
    return StatementsListResponse(
        statements=[_statement_response(s) for s in statements],
        total_count=len(statements),
    )


async def _pricing_tiers(db: AsyncSession, tenant_id: UUID, title_id: UUID) -> list[ContractTier]:
    """Tiers of the title's primary author's active contract (empty if none)."""
    result = await db.execute(
        select(TitleAuthor)
        .where(TitleAuthor.title_id == title_id)
        .order_by(TitleAuthor.is_primary.desc(), TitleAuthor.ownership_percentage.desc())
        .limit(1)
    )
    primary = result.scalar_one_or_none()

    query = select(Contract).where(
        Contract.tenant_id == tenant_id,
        Contract.title_id == title_id,
        Contract.status == ContractStatus.ACTIVE,
    )
    if primary is not None:
        query = query.where(Contract.contact_id == primary.contact_id)
    result = await db.execute(query.order_by(Contract.created_at, Contract.id).limit(1))
    contract = result.scalar_one_or_none()
    if contract is None:
        return []

    result = await db.execute(select(ContractTier).where(ContractTier.contract_id == contract.id))
    return list(result.scalars().all())


@titles_router.get("/{title_id}/lifetime", response_model=TitleLifetimeResponse)
async def get_title_lifetime(
    title_id: UUID,
    tenant_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    _token: Annotated[str, Depends(verify_admin_token)],
) -> TitleLifetimeResponse:
    """
    Get a title's lifetime sales per format.

    Tier position fields are filled from the pricing contract's schedule
    when it has a valid one for the format.
    """
    states = await get_title_states(db, tenant_id, title_id)
    tier_rows = await _pricing_tiers(db, tenant_id, title_id)

    formats = []
    for state in states:
        entry = LifetimeStateResponse(
            format=state.format,
            quantity=state.quantity,
            revenue=state.revenue,
            as_of=state.as_of,
            version=state.version,
        )
        try:
            schedule = resolve_schedule(tier_rows, SalesFormat(state.format))
        except ScheduleError as e:
            logger.debug(f"No tier position for title {title_id} {state.format}: {e}")
        else:
            position = tier_position(schedule, state.quantity)
            entry = entry.model_copy(
                update={
                    "current_tier_rate": position.current_tier_rate,
                    "next_tier_threshold": position.next_tier_threshold,
                    "units_to_next_tier": position.units_to_next_tier,
                }
            )
        formats.append(entry)

    return TitleLifetimeResponse(title_id=title_id, formats=formats)
