"""
Contracts Router

Handles author contracts and their tiered rate schedules.
"""

import logging
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.database import get_db
from app.core.config import settings
from app.models import AdvanceLedgerEntry, Contact, Contract, ContractTier, LedgerEntryType, SalesFormat, Title
from app.schemas.contracts import (
    ContractCreate,
    ContractResponse,
    RateScheduleResponse,
    ScheduleTier,
)
from app.services.exceptions import ScheduleError
from app.services.rate_schedule import load_schedule

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contracts", tags=["contracts"])


async def verify_admin_token(x_admin_token: Annotated[str, Header()]) -> str:
    """Verify the admin token from header."""
    if x_admin_token != settings.ADMIN_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
        )
    return x_admin_token


async def _get_contract(db: AsyncSession, contract_id: UUID) -> Contract:
    query = select(Contract).options(selectinload(Contract.tiers)).where(Contract.id == contract_id)
    result = await db.execute(query)
    contract = result.scalar_one_or_none()

    if not contract:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Contract {contract_id} not found",
        )
    return contract


@router.get("", response_model=list[ContractResponse])
async def list_contracts(
    tenant_id: UUID,
    contact_id: Optional[UUID] = None,
    title_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    _token: str = Depends(verify_admin_token),
):
    """
    List a tenant's contracts with optional filters.

    Query params:
    - contact_id: Filter by author
    - title_id: Filter by title
    """
    query = (
        select(Contract)
        .options(selectinload(Contract.tiers))
        .where(Contract.tenant_id == tenant_id)
    )

    if contact_id:
        query = query.where(Contract.contact_id == contact_id)

    if title_id:
        query = query.where(Contract.title_id == title_id)

    query = query.order_by(Contract.created_at.desc())

    result = await db.execute(query)
    return result.scalars().all()


@router.get("/{contract_id}", response_model=ContractResponse)
async def get_contract(
    contract_id: UUID,
    db: AsyncSession = Depends(get_db),
    _token: str = Depends(verify_admin_token),
):
    """Get a specific contract by ID."""
    return await _get_contract(db, contract_id)


@router.post("", response_model=ContractResponse, status_code=status.HTTP_201_CREATED)
async def create_contract(
    contract_data: ContractCreate,
    db: AsyncSession = Depends(get_db),
    _token: str = Depends(verify_admin_token),
):
    """
    Create a new contract with its tiers.

    Validates:
    - Contact and title exist in the tenant
    - Every format's tiers start at 0, are contiguous and end open-ended
    - advance_recouped does not exceed advance_amount

    A non-zero advance is recorded as an ADVANCE ledger entry.
    """
    contact = await db.get(Contact, contract_data.contact_id)
    if not contact or contact.tenant_id != contract_data.tenant_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Contact {contract_data.contact_id} not found",
        )

    title = await db.get(Title, contract_data.title_id)
    if not title or title.tenant_id != contract_data.tenant_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Title {contract_data.title_id} not found",
        )

    contract = Contract(
        tenant_id=contract_data.tenant_id,
        contact_id=contract_data.contact_id,
        title_id=contract_data.title_id,
        tier_calculation_mode=contract_data.tier_calculation_mode,
        advance_amount=contract_data.advance_amount,
        advance_recouped=contract_data.advance_recouped,
        description=contract_data.description,
    )
    db.add(contract)
    await db.flush()

    for tier in contract_data.tiers:
        db.add(
            ContractTier(
                contract_id=contract.id,
                format=tier.format,
                min_quantity=tier.min_quantity,
                max_quantity=tier.max_quantity,
                rate=tier.rate,
            )
        )

    if contract_data.advance_amount > 0:
        db.add(
            AdvanceLedgerEntry(
                tenant_id=contract_data.tenant_id,
                contact_id=contract_data.contact_id,
                contract_id=contract.id,
                entry_type=LedgerEntryType.ADVANCE,
                amount=contract_data.advance_amount,
                recouped_before=contract_data.advance_recouped,
                recouped_after=contract_data.advance_recouped,
                description="Advance paid on signing",
            )
        )

    await db.commit()
    logger.info(f"Created contract {contract.id} for contact {contract.contact_id}")

    return await _get_contract(db, contract.id)


@router.get("/{contract_id}/schedule/{sales_format}", response_model=RateScheduleResponse)
async def get_schedule(
    contract_id: UUID,
    sales_format: SalesFormat,
    db: AsyncSession = Depends(get_db),
    _token: str = Depends(verify_admin_token),
):
    """
    Get the validated rate schedule of one format.

    Returns 422 when the stored tiers do not form a valid schedule.
    """
    await _get_contract(db, contract_id)

    try:
        schedule = await load_schedule(db, contract_id, sales_format)
    except ScheduleError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )

    return RateScheduleResponse(
        contract_id=contract_id,
        format=schedule.format,
        tiers=[
            ScheduleTier(min_quantity=t.min_quantity, max_quantity=t.max_quantity, rate=t.rate)
            for t in schedule.tiers
        ],
    )
