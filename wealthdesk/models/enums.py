"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization and plain VARCHAR columns.
"""

from __future__ import annotations

from enum import Enum


class ProposalStatus(str, Enum):
    """Proposal lifecycle — see pipeline.states for the transition table."""

    DRAFT = "draft"
    EXTRACTING = "extracting"
    REVIEWING = "reviewing"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class ExtractionStatus(str, Enum):
    """Per-illustration extraction lifecycle: pending → processing → completed|failed."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ReviewStatus(str, Enum):
    """Advisor review of an illustration's extracted data."""

    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class AnalysisStatus(str, Enum):
    """Intelligent analysis job status. Completes or fails exactly once."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ProposalType(str, Enum):
    """Which proposal document the advisor asked for."""

    COMPLETE = "complete"
    SUMMARY = "summary"
    BOTH = "both"


class TargetCurrency(str, Enum):
    """Currencies the proposal can be presented in."""

    MYR = "MYR"
    IDR = "IDR"


class ProposalPage(int, Enum):
    """Logical proposal pages served by get_page."""

    TITLE = 1
    FEATURES = 2
    ILLUSTRATION = 3
    RECOMMENDATION = 4

    @property
    def title(self) -> str:
        return _PAGE_TITLES[self]


_PAGE_TITLES: dict[ProposalPage, str] = {
    ProposalPage.TITLE: "Title",
    ProposalPage.FEATURES: "Features",
    ProposalPage.ILLUSTRATION: "Illustration",
    ProposalPage.RECOMMENDATION: "Recommendation",
}
