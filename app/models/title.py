"""Title model."""
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, List

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.title_author import TitleAuthor


class Title(Base):
    """A published title whose sales earn royalties."""

    __tablename__ = "titles"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    isbn: Mapped[str] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    authors: Mapped[List["TitleAuthor"]] = relationship(
        "TitleAuthor",
        back_populates="title",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Title {self.id} title={self.title}>"
