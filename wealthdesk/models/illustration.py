"""Illustration model — one uploaded PDF policy illustration."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from sqlalchemy import Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wealthdesk.models.base import Base, TimestampMixin
from wealthdesk.models.enums import ExtractionStatus, ReviewStatus

if TYPE_CHECKING:
    from wealthdesk.models.proposal import Proposal


class Illustration(TimestampMixin, Base):
    """An uploaded illustration with its extraction and match results."""

    __tablename__ = "illustrations"
    __table_args__ = (UniqueConstraint("proposal_id", "illustration_order", name="uq_illustration_order"),)

    # Foreign keys
    proposal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # File metadata
    illustration_order: Mapped[int] = mapped_column(Integer, nullable=False, comment="1..5 display order")
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    blob_ref: Mapped[str | None] = mapped_column(String(500), comment="Blob storage reference for the PDF")

    # Extraction
    extracted_data: Mapped[dict[str, Any] | None] = mapped_column(JSONB, comment="ExtractedData payload")
    extraction_status: Mapped[str] = mapped_column(
        String(20), default=ExtractionStatus.PENDING.value, nullable=False
    )
    extraction_confidence: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    extraction_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processing_notes: Mapped[str | None] = mapped_column(Text)
    data_edited: Mapped[bool] = mapped_column(default=False, comment="Advisor edited extracted_data")

    # Matching & review
    database_match: Mapped[dict[str, Any] | None] = mapped_column(JSONB, comment="DatabaseMatch payload")
    selected_insurance_id: Mapped[str | None] = mapped_column(String(100))
    review_status: Mapped[str] = mapped_column(String(20), default=ReviewStatus.PENDING.value, nullable=False)
    user_notes: Mapped[str | None] = mapped_column(Text)

    # Relationships
    proposal: Mapped[Proposal] = relationship("Proposal", back_populates="illustrations")

    def __repr__(self) -> str:
        return (
            f"<Illustration id={self.id} order={self.illustration_order} "
            f"extraction={self.extraction_status} confidence={self.extraction_confidence}>"
        )
