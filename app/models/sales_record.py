"""SalesRecord model: unit sales and returns per title and format."""
import uuid
from datetime import datetime, date
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, Date, Integer, Numeric, ForeignKey, Index, String, or_
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base
from app.models.contract import SalesFormat


class ReturnStatus(str, Enum):
    """Approval state of a return. Only approved returns affect royalties."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SalesRecord(Base):
    """
    A sale or a return of a title in one format.

    Returns are records with negative quantity. Their revenue is the amount
    refunded and is read by magnitude, whatever sign it was recorded with.
    A return counts only once its `return_status` is approved.
    """

    __tablename__ = "sales_records"

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
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    revenue: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )
    sale_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Returns only; null on sales
    return_status: Mapped[str] = mapped_column(
        SAEnum(ReturnStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )

    # Free-form channel label (e.g. "ingram", "amazon", "direct")
    channel: Mapped[str] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("idx_sales_tenant_title_date", "tenant_id", "title_id", "sale_date"),
    )

    @property
    def is_return(self) -> bool:
        return self.quantity < 0

    @classmethod
    def counts_toward_royalties(cls):
        """Filter clause: every sale, and returns that have been approved."""
        return or_(cls.quantity >= 0, cls.return_status == ReturnStatus.APPROVED)

    def __repr__(self) -> str:
        return f"<SalesRecord {self.format} qty={self.quantity} revenue={self.revenue} date={self.sale_date}>"
