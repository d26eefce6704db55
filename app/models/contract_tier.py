"""ContractTier model: one volume tier of a contract's rate schedule."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, Integer, Numeric, ForeignKey, CheckConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base
from app.models.contract import SalesFormat

if TYPE_CHECKING:
    from app.models.contract import Contract


class ContractTier(Base):
    """
    Quantity range [min_quantity, max_quantity] paid at a single rate.

    max_quantity = NULL marks the open-ended top tier. Tiers of one format
    are contiguous: the next tier starts at max_quantity + 1.
    """

    __tablename__ = "contract_tiers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    contract_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("contracts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    format: Mapped[str] = mapped_column(
        SAEnum(SalesFormat, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    min_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    max_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # 0.0000 to 1.0000
    rate: Mapped[Decimal] = mapped_column(Numeric(precision=5, scale=4), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    contract: Mapped["Contract"] = relationship("Contract", back_populates="tiers")

    __table_args__ = (
        CheckConstraint("min_quantity >= 0", name="check_tier_min_quantity_nonnegative"),
        CheckConstraint(
            "max_quantity IS NULL OR max_quantity >= min_quantity",
            name="check_tier_max_quantity_valid",
        ),
        CheckConstraint("rate >= 0 AND rate <= 1", name="check_tier_rate_range"),
    )

    def __repr__(self) -> str:
        return f"<ContractTier {self.format} {self.min_quantity}-{self.max_quantity} rate={self.rate}>"
