"""Schemas for contracts and their tiered rate schedules."""
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.contract import ContractStatus, SalesFormat, TierCalculationMode
from app.services.exceptions import ScheduleError
from app.services.rate_schedule import Tier, resolve_schedule


class TierBase(BaseModel):
    """One quantity range of a format's rate schedule."""
    format: SalesFormat
    min_quantity: int = Field(..., ge=0, description="First unit of the tier (inclusive)")
    max_quantity: Optional[int] = Field(None, ge=0, description="Last unit of the tier (inclusive), null = open-ended")
    rate: Decimal = Field(..., ge=0, le=1, description="Royalty rate (0.0 to 1.0)")

    @model_validator(mode="after")
    def validate_range(self):
        if self.max_quantity is not None and self.max_quantity < self.min_quantity:
            raise ValueError("max_quantity must be >= min_quantity")
        return self


class TierCreate(TierBase):
    """Schema for creating a contract tier."""
    pass


class TierResponse(TierBase):
    """Schema for contract tier response."""
    id: UUID
    contract_id: UUID

    class Config:
        from_attributes = True


class ContractBase(BaseModel):
    """Base schema for a contract."""
    tier_calculation_mode: TierCalculationMode = Field(
        default=TierCalculationMode.PERIOD,
        description="'period' resets tiers every period, 'lifetime' uses cumulative title sales",
    )
    advance_amount: Decimal = Field(default=Decimal("0"), ge=0, description="Original advance")
    description: Optional[str] = Field(None, max_length=500)


class ContractCreate(ContractBase):
    """Schema for creating a contract with its tiers."""
    tenant_id: UUID
    contact_id: UUID = Field(..., description="Author (contact) holding the contract")
    title_id: UUID
    advance_recouped: Decimal = Field(default=Decimal("0"), ge=0, description="Advance already recouped")
    tiers: list[TierCreate] = Field(..., description="Tiers for every format the contract prices")

    @field_validator('tiers')
    @classmethod
    def validate_tiers(cls, v):
        if not v:
            raise ValueError("At least one tier is required")

        by_format: dict[SalesFormat, list[Tier]] = defaultdict(list)
        for tier in v:
            by_format[tier.format].append(
                Tier(min_quantity=tier.min_quantity, max_quantity=tier.max_quantity, rate=tier.rate)
            )
        for sales_format, tiers in by_format.items():
            try:
                resolve_schedule(tiers, sales_format)
            except ScheduleError as e:
                raise ValueError(str(e)) from e
        return v

    @model_validator(mode="after")
    def validate_advance(self):
        if self.advance_recouped > self.advance_amount:
            raise ValueError("advance_recouped cannot exceed advance_amount")
        return self


class ContractResponse(ContractBase):
    """Schema for contract response."""
    id: UUID
    tenant_id: UUID
    contact_id: UUID
    title_id: UUID
    advance_recouped: Decimal
    status: ContractStatus
    tiers: list[TierResponse] = []
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ScheduleTier(BaseModel):
    min_quantity: int
    max_quantity: Optional[int] = None
    rate: Decimal


class RateScheduleResponse(BaseModel):
    """Validated rate schedule of one format."""
    contract_id: UUID
    format: SalesFormat
    tiers: list[ScheduleTier]
