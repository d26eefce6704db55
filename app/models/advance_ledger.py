"""
Advance Ledger model for tracking advances and recoupments.

LEDGER CONVENTION:
- ADVANCE entries: positive amount (advance paid to the author)
- RECOUPMENT entries: positive amount (recovered from the author's royalties)

The running state lives on the contract (advance_amount, advance_recouped);
this ledger is the append-only trail of how it got there.

RECOUPMENT RULE:
  On each statement:
  remaining = max(0, advance_amount - advance_recouped)
  recouped = min(gross_royalty, remaining)
  net_payable = gross_royalty - recouped
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, Numeric, ForeignKey, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base


class LedgerEntryType(str, Enum):
    """Type of ledger entry."""
    ADVANCE = "advance"         # Money paid to author
    RECOUPMENT = "recoupment"   # Money recovered from royalties


class AdvanceLedgerEntry(Base):
    """
    Ledger entry for tracking advances and recoupments.

    Each entry is a positive amount with a type indicating
    whether it's an advance or recoupment.
    """

    __tablename__ = "advance_ledger"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    contact_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    contract_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("contracts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Entry type and amount
    entry_type: Mapped[str] = mapped_column(
        SAEnum(LedgerEntryType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
    )

    # Advance state around this entry
    recouped_before: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=True)
    recouped_after: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=True)

    # Statement that produced a recoupment entry
    statement_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("statements.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    description: Mapped[str] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AdvanceLedgerEntry {self.id} type={self.entry_type} amount={self.amount}>"
