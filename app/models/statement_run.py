"""StatementRun model for tracking batch statement generation."""
import uuid
from datetime import datetime, date
from enum import Enum
from typing import Any, Dict, List

from sqlalchemy import DateTime, Date, Integer, Text, JSON
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base


class StatementRunStatus(str, Enum):
    """Status of a statement run."""
    PROCESSING = "processing"  # Authors being processed
    COMPLETED = "completed"    # Every requested author was attempted
    CANCELLED = "cancelled"    # Aborted before all authors were attempted
    FAILED = "failed"          # The run itself failed (not an individual author)


class StatementRun(Base):
    """
    A batch of statement generations for one tenant and period.

    Audit trail:
    - Records the requested authors and period
    - Stores one result per attempted author (success, skip or failure)
    - Keeps aggregated counts for quick access
    """

    __tablename__ = "statement_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    # Run parameters
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    author_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(
        SAEnum(StatementRunStatus, values_callable=lambda x: [e.value for e in x]),
        default=StatementRunStatus.PROCESSING,
        nullable=False,
        index=True,
    )

    # Per-author results (JSON list of AuthorStatementResult dumps)
    results: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    error_message: Mapped[str] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<StatementRun {self.id} period={self.period_start}-{self.period_end} status={self.status}>"
