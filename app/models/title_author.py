"""TitleAuthor model linking contacts to titles with ownership percentages."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Numeric, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.contact import Contact
    from app.models.title import Title


class TitleAuthor(Base):
    """
    Ownership share of a title held by one author.

    A title can have several authors, each owning a percentage of the
    title's royalty. For every title the percentages sum to 100.00:

    - Author A (primary): 60.00
    - Author B: 40.00
    """

    __tablename__ = "title_authors"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    title_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("titles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    contact_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("contacts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # 0.01 to 100.00
    ownership_percentage: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2),
        nullable=False,
    )
    # The primary author's contract prices the title and wins split tie-breaks
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    title: Mapped["Title"] = relationship("Title", back_populates="authors")
    contact: Mapped["Contact"] = relationship("Contact", back_populates="title_links")

    __table_args__ = (
        CheckConstraint(
            "ownership_percentage > 0 AND ownership_percentage <= 100",
            name="check_ownership_percentage_range",
        ),
        UniqueConstraint("title_id", "contact_id", name="uq_title_authors_title_contact"),
    )

    def __repr__(self) -> str:
        return f"<TitleAuthor title={self.title_id} contact={self.contact_id} share={self.ownership_percentage}>"
