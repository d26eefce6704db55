"""Lifetime sales state and per-period snapshots (title level, never per author)."""
import uuid
from datetime import datetime, date
from decimal import Decimal

from sqlalchemy import DateTime, Date, Integer, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base
from app.models.contract import SalesFormat


class LifetimeSalesState(Base):
    """
    Cumulative quantity and revenue of a title in one format.

    One row per (tenant, title, format). `as_of` is the last period end that
    has been folded in; `version` increases on every advance.
    """

    __tablename__ = "lifetime_sales_state"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    title_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("titles.id", ondelete="CASCADE"),
        nullable=False,
    )
    format: Mapped[str] = mapped_column(
        SAEnum(SalesFormat, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    revenue: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0"),
        nullable=False,
    )
    as_of: Mapped[date] = mapped_column(Date, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "title_id", "format", name="uq_lifetime_state_title_format"),
    )

    def __repr__(self) -> str:
        return f"<LifetimeSalesState title={self.title_id} {self.format} qty={self.quantity} as_of={self.as_of}>"


class LifetimeSalesSnapshot(Base):
    """
    Before/after window recorded the one time a title is advanced for a period.

    Every co-author's statement for that period reads this same row.
    """

    __tablename__ = "lifetime_sales_snapshots"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    title_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("titles.id", ondelete="CASCADE"),
        nullable=False,
    )
    format: Mapped[str] = mapped_column(
        SAEnum(SalesFormat, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    quantity_before: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    revenue_before: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    revenue_after: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)

    # State version this snapshot produced
    state_version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "title_id", "format", "period_start", "period_end",
            name="uq_lifetime_snapshot_period",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<LifetimeSalesSnapshot title={self.title_id} {self.format} "
            f"{self.period_start}-{self.period_end} {self.quantity_before}->{self.quantity_after}>"
        )
