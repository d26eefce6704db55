"""
Batch statement orchestrator.

Generates statements for a list of authors and one period, recording the
run and every author's outcome on a StatementRun:

- each author gets its own session and transaction
- a failure is recorded and the batch moves on
- a duplicate statement is a skip, not a failure
- setting the cancel event stops the batch before the next author starts;
  statements already persisted stay
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import async_session_maker
from app.models.contact import Contact
from app.models.statement_run import StatementRun, StatementRunStatus
from app.schemas.royalties import AuthorStatementResult, StatementRunCreate
from app.services.exceptions import DuplicateStatementError, RoyaltyEngineError
from app.services.lifetime import TitleLockRegistry, title_locks
from app.services.statements import generate_statement

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


def _unique(ids: List[UUID]) -> List[UUID]:
    seen = set()
    ordered = []
    for author_id in ids:
        if author_id not in seen:
            seen.add(author_id)
            ordered.append(author_id)
    return ordered


async def _process_author(
    session_factory: SessionFactory,
    run: StatementRun,
    author_id: UUID,
    locks: TitleLockRegistry,
) -> AuthorStatementResult:
    async with session_factory() as db:
        try:
            contact = await db.get(Contact, author_id)
            if contact is None or contact.tenant_id != run.tenant_id:
                return AuthorStatementResult(
                    author_id=author_id,
                    success=False,
                    error="Author (contact) not found",
                    error_code="contact_not_found",
                )

            statement = await generate_statement(
                db,
                tenant_id=run.tenant_id,
                contact_id=author_id,
                period_start=run.period_start,
                period_end=run.period_end,
                batch_run_id=run.id,
                locks=locks,
            )
            return AuthorStatementResult(author_id=author_id, statement_id=statement.id, success=True)

        except DuplicateStatementError as e:
            return AuthorStatementResult(
                author_id=author_id,
                success=False,
                skipped=True,
                error=str(e),
                error_code=e.code,
            )
        except RoyaltyEngineError as e:
            logger.error(f"Statement generation failed for author {author_id}: {e}")
            return AuthorStatementResult(
                author_id=author_id,
                success=False,
                error=str(e),
                error_code=e.code,
            )
        except Exception as e:
            logger.exception(f"Unexpected error generating statement for author {author_id}")
            return AuthorStatementResult(
                author_id=author_id,
                success=False,
                error=str(e),
                error_code="internal_error",
            )


async def run_statement_batch(
    request: StatementRunCreate,
    session_factory: Optional[SessionFactory] = None,
    cancel_event: Optional[asyncio.Event] = None,
    concurrency: Optional[int] = None,
    locks: TitleLockRegistry = title_locks,
) -> StatementRun:
    """
    Generate statements for every requested author.

    Args:
        request: Tenant, period and author ids
        session_factory: Creates one session per author (default: app session maker)
        cancel_event: Checked before each author starts
        concurrency: Authors processed at once (default: STATEMENT_BATCH_CONCURRENCY)
        locks: Per-title lock registry shared by all authors

    Returns:
        The finished StatementRun with per-author results and counts
    """
    session_factory = session_factory or async_session_maker
    concurrency = concurrency or get_settings().STATEMENT_BATCH_CONCURRENCY
    author_ids = _unique(list(request.author_ids))

    async with session_factory() as db:
        run = StatementRun(
            tenant_id=request.tenant_id,
            period_start=request.period_start,
            period_end=request.period_end,
            author_ids=[str(a) for a in author_ids],
            status=StatementRunStatus.PROCESSING,
        )
        db.add(run)
        await db.commit()
        await db.refresh(run)

    logger.info(
        f"Starting statement run {run.id}: {len(author_ids)} authors, "
        f"{run.period_start} to {run.period_end}"
    )

    semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def process(author_id: UUID) -> Optional[AuthorStatementResult]:
        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                return None
            return await _process_author(session_factory, run, author_id, locks)

    try:
        outcomes = await asyncio.gather(*(process(a) for a in author_ids))
    except Exception as e:
        logger.exception(f"Statement run {run.id} failed")
        async with session_factory() as db:
            failed = await db.get(StatementRun, run.id)
            failed.status = StatementRunStatus.FAILED
            failed.error_message = str(e)
            failed.completed_at = datetime.utcnow()
            await db.commit()
        raise

    results = [r for r in outcomes if r is not None]
    status = (
        StatementRunStatus.CANCELLED if len(results) < len(author_ids) else StatementRunStatus.COMPLETED
    )

    async with session_factory() as db:
        run = await db.get(StatementRun, run.id)
        run.results = [r.model_dump(mode="json", by_alias=True) for r in results]
        run.success_count = sum(1 for r in results if r.success)
        run.skipped_count = sum(1 for r in results if r.skipped)
        run.failed_count = sum(1 for r in results if not r.success and not r.skipped)
        run.status = status
        run.completed_at = datetime.utcnow()
        await db.commit()
        await db.refresh(run)

    logger.info(
        f"Statement run {run.id} {status.value}: "
        f"{run.success_count} generated, {run.skipped_count} skipped, {run.failed_count} failed"
    )
    return run


async def get_statement_run(db: AsyncSession, run_id: UUID) -> Optional[StatementRun]:
    return await db.get(StatementRun, run_id)
