"""Statement model: the persisted, immutable royalty calculation for one author and period."""
import uuid
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List

from sqlalchemy import DateTime, Date, Numeric, ForeignKey, JSON, UniqueConstraint, event
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base
from app.services.exceptions import StatementImmutableError


class StatementStatus(str, Enum):
    """Status of a statement. Generated statements never move back."""
    DRAFT = "draft"


class Statement(Base):
    """
    Author royalty statement for a specific period.

    Identified by (tenant_id, contact_id, period_start, period_end); the
    unique constraint is what makes generation insert-or-fail. The full
    breakdown lives in `calculations` (StatementCalculation JSON).
    """

    __tablename__ = "statements"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    contact_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("contacts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    contract_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("contracts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    title_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("titles.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Batch run that generated it (null when generated directly)
    statement_run_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("statement_runs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        SAEnum(StatementStatus, values_callable=lambda x: [e.value for e in x]),
        default=StatementStatus.DRAFT,
        nullable=False,
    )

    # Amounts (denormalized from calculations for quick access)
    gross_royalty: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )
    recoupment: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )
    net_payable: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )

    calculations: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    warnings: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "contact_id", "period_start", "period_end",
            name="uq_statements_tenant_contact_period",
        ),
    )

    def __repr__(self) -> str:
        return f"<Statement {self.id} contact={self.contact_id} net_payable={self.net_payable}>"


@event.listens_for(Statement, "before_update")
def _block_statement_update(mapper, connection, target: Statement) -> None:
    raise StatementImmutableError(f"Statement {target.id} is immutable and cannot be updated")


@event.listens_for(Statement, "before_delete")
def _block_statement_delete(mapper, connection, target: Statement) -> None:
    raise StatementImmutableError(f"Statement {target.id} is immutable and cannot be deleted")
