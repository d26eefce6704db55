"""Contact model for authors receiving royalty statements."""
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, List

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.contract import Contract
    from app.models.title_author import TitleAuthor


class Contact(Base):
    """Tenant-scoped contact (author) that can hold contracts and statements."""

    __tablename__ = "contacts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=True)

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
    contracts: Mapped[List["Contract"]] = relationship(
        "Contract",
        back_populates="contact",
    )
    title_links: Mapped[List["TitleAuthor"]] = relationship(
        "TitleAuthor",
        back_populates="contact",
    )

    def __repr__(self) -> str:
        return f"<Contact {self.id} name={self.name}>"
