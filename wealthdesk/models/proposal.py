"""Proposal model — the aggregate root owning up to five illustrations."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wealthdesk.models.base import Base, TimestampMixin
from wealthdesk.models.enums import ProposalStatus, ProposalType, TargetCurrency

if TYPE_CHECKING:
    from wealthdesk.models.analysis_job import AnalysisJob
    from wealthdesk.models.illustration import Illustration


class Proposal(TimestampMixin, Base):
    """A client proposal assembled from policy illustrations."""

    __tablename__ = "proposals"

    # Client context
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_needs: Mapped[str] = mapped_column(Text, nullable=False)
    proposal_type: Mapped[str] = mapped_column(String(20), default=ProposalType.COMPLETE.value, nullable=False)
    target_currency: Mapped[str] = mapped_column(String(3), default=TargetCurrency.MYR.value, nullable=False)

    # State machine
    status: Mapped[str] = mapped_column(
        String(20), default=ProposalStatus.DRAFT.value, nullable=False, index=True
    )
    failed_from: Mapped[str | None] = mapped_column(String(20), comment="Status to return to on retry")
    status_note: Mapped[str | None] = mapped_column(Text, comment="Human-readable reason for the current status")
    generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Deleting the proposal deletes its children
    illustrations: Mapped[list[Illustration]] = relationship(
        "Illustration",
        back_populates="proposal",
        cascade="all, delete-orphan",
        order_by="Illustration.illustration_order",
    )
    analysis_job: Mapped[AnalysisJob | None] = relationship(
        "AnalysisJob",
        back_populates="proposal",
        cascade="all, delete-orphan",
        uselist=False,
    )

    def __repr__(self) -> str:
        return f"<Proposal id={self.id} status={self.status} client={self.client_name}>"
