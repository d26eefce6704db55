"""Pydantic schemas for the royalty statement API."""
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from app.models.contract import SalesFormat
from app.models.statement import StatementStatus
from app.models.statement_run import StatementRunStatus


class CamelModel(BaseModel):
    """Base for the outbound statement shape (camelCase keys, immutable)."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# StatementCalculation

class StatementPeriod(CamelModel):
    start_date: date
    end_date: date


class TierBreakdownSchema(CamelModel):
    tier_min_quantity: int
    tier_max_quantity: Optional[int] = Field(description="None for the open-ended top tier")
    tier_rate: Decimal
    quantity_in_tier: int
    royalty_earned: Decimal


class FormatBreakdownSchema(CamelModel):
    format: SalesFormat
    total_quantity: int
    total_revenue: Decimal
    tier_breakdowns: List[TierBreakdownSchema] = Field(default_factory=list)
    format_royalty: Decimal


class AdvanceRecoupmentSchema(CamelModel):
    original_advance: Decimal
    previously_recouped: Decimal
    this_periods_recoupment: Decimal
    remaining_advance: Decimal


class AuthorShareSchema(CamelModel):
    contact_id: UUID
    ownership_percentage: Decimal
    is_primary: bool
    amount: Decimal


class SplitCalculationSchema(CamelModel):
    """Present only for co-authored titles."""
    title_total_royalty: Decimal
    ownership_percentage: Decimal
    is_split_calculation: Literal[True] = True
    author_shares: List[AuthorShareSchema] = Field(default_factory=list)


class LifetimeFormatContext(CamelModel):
    format: SalesFormat
    lifetime_sales_before: int
    lifetime_sales_after: int
    lifetime_revenue_before: Decimal
    lifetime_revenue_after: Decimal
    current_tier_rate: Decimal
    next_tier_threshold: Optional[int] = None
    units_to_next_tier: Optional[int] = None


class LifetimeContextSchema(CamelModel):
    """
    Present only when the pricing contract is in lifetime mode.

    The flat fields describe the lead format (most lifetime units after the
    period); `formats` carries every format's window.
    """
    tier_calculation_mode: Literal["lifetime"] = "lifetime"
    format: SalesFormat
    lifetime_sales_before: int
    lifetime_sales_after: int
    lifetime_revenue_before: Decimal
    lifetime_revenue_after: Decimal
    current_tier_rate: Decimal
    next_tier_threshold: Optional[int] = None
    units_to_next_tier: Optional[int] = None
    formats: List[LifetimeFormatContext] = Field(default_factory=list)


class StatementWarning(CamelModel):
    code: str
    format: str
    message: str
    excess_quantity: int = 0


class StatementCalculation(CamelModel):
    """The immutable calculation artifact stored on every statement."""
    period: StatementPeriod
    format_breakdowns: List[FormatBreakdownSchema] = Field(default_factory=list)
    returns_deduction: Decimal
    gross_royalty: Decimal
    advance_recoupment: AdvanceRecoupmentSchema
    net_payable: Decimal
    split_calculation: Optional[SplitCalculationSchema] = None
    lifetime_context: Optional[LifetimeContextSchema] = None

    def to_json(self) -> Dict[str, Any]:
        """JSON-safe camelCase dict; absent optional blocks are omitted, not null."""
        exclude = {
            name for name in ("split_calculation", "lifetime_context")
            if getattr(self, name) is None
        }
        return self.model_dump(mode="json", by_alias=True, exclude=exclude)


# Request schemas

class StatementRunCreate(CamelModel):
    """Batch trigger: generate statements for these authors and period."""
    tenant_id: UUID
    period_start: date
    period_end: date
    author_ids: List[UUID] = Field(min_length=1)

    @model_validator(mode="after")
    def check_period(self) -> "StatementRunCreate":
        if self.period_end < self.period_start:
            raise ValueError("periodEnd must not be before periodStart")
        return self


class StatementPreviewRequest(CamelModel):
    """Calculate one author's statement without persisting anything."""
    tenant_id: UUID
    contact_id: UUID
    period_start: date
    period_end: date
    contract_id: Optional[UUID] = None

    @model_validator(mode="after")
    def check_period(self) -> "StatementPreviewRequest":
        if self.period_end < self.period_start:
            raise ValueError("periodEnd must not be before periodStart")
        return self


# Response schemas

class AuthorStatementResult(CamelModel):
    """Outcome of one author in a batch run."""
    author_id: UUID
    statement_id: Optional[UUID] = None
    success: bool
    skipped: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None


class StatementRunResponse(CamelModel):
    run_id: UUID
    tenant_id: UUID
    period_start: date
    period_end: date
    status: StatementRunStatus
    success_count: int
    skipped_count: int
    failed_count: int
    results: List[AuthorStatementResult] = Field(default_factory=list)
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class StatementPreviewResponse(CamelModel):
    contact_id: UUID
    contract_id: UUID
    title_id: UUID
    calculation: Dict[str, Any]
    warnings: List[StatementWarning] = Field(default_factory=list)


class StatementResponse(CamelModel):
    """Persisted statement with its calculation."""
    id: UUID
    tenant_id: UUID
    contact_id: UUID
    contract_id: UUID
    title_id: UUID
    statement_run_id: Optional[UUID] = None
    period_start: date
    period_end: date
    status: StatementStatus
    gross_royalty: Decimal
    recoupment: Decimal
    net_payable: Decimal
    calculations: Dict[str, Any]
    warnings: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: datetime


class StatementsListResponse(CamelModel):
    statements: List[StatementResponse] = Field(default_factory=list)
    total_count: int


class LifetimeStateResponse(CamelModel):
    format: SalesFormat
    quantity: int
    revenue: Decimal
    as_of: date
    version: int
    current_tier_rate: Optional[Decimal] = None
    next_tier_threshold: Optional[int] = None
    units_to_next_tier: Optional[int] = None


class TitleLifetimeResponse(CamelModel):
    title_id: UUID
    formats: List[LifetimeStateResponse] = Field(default_factory=list)
