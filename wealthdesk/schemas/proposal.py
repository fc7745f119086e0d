"""Pydantic records for proposals, illustrations and analysis jobs.

These are the shapes the orchestrator and stores exchange. The SQL store maps
them to ORM rows; the in-memory store keeps them directly.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from wealthdesk.models.enums import (
    AnalysisStatus,
    ExtractionStatus,
    ProposalStatus,
    ProposalType,
    ReviewStatus,
    TargetCurrency,
)
from wealthdesk.schemas.extraction import ExtractedData
from wealthdesk.schemas.matching import DatabaseMatch


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Inputs ───────────────────────────────────────────────────────────


class ProposalCreate(BaseModel):
    """Advisor input for a new proposal."""

    client_name: str = Field(min_length=1, max_length=255)
    client_needs: str = Field(min_length=10)
    proposal_type: ProposalType = ProposalType.COMPLETE
    target_currency: TargetCurrency = TargetCurrency.MYR


class IncomingFile(BaseModel):
    """One uploaded file as received at the boundary."""

    filename: str
    content_type: str | None = None
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class IllustrationUpdate(BaseModel):
    """Advisor edits to one illustration. Only fields that are set are applied."""

    extracted_data: ExtractedData | None = None
    selected_insurance_id: str | None = None
    review_status: ReviewStatus | None = None
    user_notes: str | None = None


# ── Records ──────────────────────────────────────────────────────────


class ProposalRecord(BaseModel):
    """The proposal aggregate root."""

    model_config = ConfigDict(validate_assignment=True)

    proposal_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    client_name: str
    client_needs: str
    proposal_type: ProposalType = ProposalType.COMPLETE
    target_currency: TargetCurrency = TargetCurrency.MYR
    status: ProposalStatus = ProposalStatus.DRAFT
    failed_from: ProposalStatus | None = None
    status_note: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    generated_at: datetime | None = None


class IllustrationRecord(BaseModel):
    """One uploaded illustration and everything derived from it."""

    model_config = ConfigDict(validate_assignment=True)

    illustration_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    proposal_id: uuid.UUID
    order: int = Field(ge=1)
    original_filename: str
    file_size_bytes: int = Field(ge=0)
    blob_ref: str | None = None
    extracted_data: ExtractedData | None = None
    database_match: DatabaseMatch | None = None
    selected_insurance_id: str | None = None
    extraction_status: ExtractionStatus = ExtractionStatus.PENDING
    extraction_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    extraction_attempts: int = 0
    processing_notes: str | None = None
    data_edited: bool = False
    review_status: ReviewStatus = ReviewStatus.PENDING
    user_notes: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def extraction_finished(self) -> bool:
        return self.extraction_status in (ExtractionStatus.COMPLETED, ExtractionStatus.FAILED)

    @property
    def needs_product_selection(self) -> bool:
        """True while the matcher asked for manual input and the advisor has not chosen yet."""
        return (
            self.database_match is not None
            and self.database_match.requires_manual_input
            and self.selected_insurance_id is None
        )


class AnalysisJobRecord(BaseModel):
    """Intelligent analysis job, at most one per proposal."""

    model_config = ConfigDict(validate_assignment=True)

    proposal_id: uuid.UUID
    status: AnalysisStatus = AnalysisStatus.PENDING
    selected_ages: list[int] = Field(default_factory=list)
    rationale: str | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None


# ── Outputs ──────────────────────────────────────────────────────────


class PageContent(BaseModel):
    """One rendered logical page (HTML fragment)."""

    proposal_id: uuid.UUID
    page_number: int = Field(ge=1, le=4)
    title: str
    content: str
    is_placeholder: bool = False


class ProposalDocument(BaseModel):
    """The assembled final proposal document."""

    proposal_id: uuid.UUID
    filename: str
    media_type: str = "application/pdf"
    content: bytes
