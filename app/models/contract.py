"""Contract model holding tiered royalty rates and advance state."""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List

from sqlalchemy import String, DateTime, Numeric, ForeignKey, CheckConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.contact import Contact
    from app.models.contract_tier import ContractTier


class SalesFormat(str, Enum):
    """Sales formats a contract can price separately."""
    PHYSICAL = "physical"
    EBOOK = "ebook"
    AUDIOBOOK = "audiobook"


class TierCalculationMode(str, Enum):
    """
    Where a period's sales start on the tier ladder.

    PERIOD: position resets to zero every royalty period.
    LIFETIME: position is the title's cumulative sales since inception.
    """
    PERIOD = "period"
    LIFETIME = "lifetime"


class ContractStatus(str, Enum):
    """Status of a contract."""
    ACTIVE = "active"
    TERMINATED = "terminated"
    SUSPENDED = "suspended"


class Contract(Base):
    """
    Royalty contract between a tenant and an author for one title.

    Rates:
    - One ordered tier list per sales format (see ContractTier)
    - tier_calculation_mode decides period vs lifetime tier position

    Advance:
    - advance_amount is the original advance
    - advance_recouped only ever grows, and only when a statement is persisted
    """

    __tablename__ = "contracts"

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
    title_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("titles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    tier_calculation_mode: Mapped[str] = mapped_column(
        SAEnum(TierCalculationMode, values_callable=lambda x: [e.value for e in x]),
        default=TierCalculationMode.PERIOD,
        nullable=False,
    )

    # Advance
    advance_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        default=Decimal("0"),
        nullable=False,
    )
    advance_recouped: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        default=Decimal("0"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        SAEnum(ContractStatus, values_callable=lambda x: [e.value for e in x]),
        default=ContractStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    description: Mapped[str] = mapped_column(String(500), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    # Relationships
    contact: Mapped["Contact"] = relationship(
        "Contact",
        back_populates="contracts",
    )
    tiers: Mapped[List["ContractTier"]] = relationship(
        "ContractTier",
        back_populates="contract",
        cascade="all, delete-orphan",
        order_by="ContractTier.min_quantity",
    )

    # Constraints
    __table_args__ = (
        CheckConstraint(
            "advance_amount >= 0",
            name="check_advance_amount_nonnegative",
        ),
        CheckConstraint(
            "advance_recouped >= 0",
            name="check_advance_recouped_nonnegative",
        ),
    )

    def __repr__(self) -> str:
        return f"<Contract {self.id} contact={self.contact_id} title={self.title_id} mode={self.tier_calculation_mode}>"

    @property
    def is_lifetime_mode(self) -> bool:
        return TierCalculationMode(self.tier_calculation_mode) == TierCalculationMode.LIFETIME
