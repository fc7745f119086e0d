"""AnalysisJob model — the intelligent analysis side-channel, one per proposal."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wealthdesk.models.base import Base, TimestampMixin
from wealthdesk.models.enums import AnalysisStatus

if TYPE_CHECKING:
    from wealthdesk.models.proposal import Proposal


class AnalysisJob(TimestampMixin, Base):
    """Cash-surrender-value age selection job for a proposal."""

    __tablename__ = "analysis_jobs"

    # Unique: at most one job per proposal
    proposal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    status: Mapped[str] = mapped_column(String(20), default=AnalysisStatus.PENDING.value, nullable=False)
    selected_ages: Mapped[list[int]] = mapped_column(ARRAY(Integer), default=list, nullable=False)
    rationale: Mapped[str | None] = mapped_column(Text)
    error: Mapped[str | None] = mapped_column(Text)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Relationships
    proposal: Mapped[Proposal] = relationship("Proposal", back_populates="analysis_job")

    def __repr__(self) -> str:
        return f"<AnalysisJob proposal={self.proposal_id} status={self.status} ages={self.selected_ages}>"
