"""SQLAlchemy ORM models for the proposal pipeline.

Import all models here so Base.metadata.create_all() discovers them.
"""

from __future__ import annotations

from wealthdesk.models.analysis_job import AnalysisJob
from wealthdesk.models.audit import AuditLog
from wealthdesk.models.base import Base
from wealthdesk.models.enums import (
    AnalysisStatus,
    ExtractionStatus,
    ProposalPage,
    ProposalStatus,
    ProposalType,
    ReviewStatus,
    TargetCurrency,
)
from wealthdesk.models.illustration import Illustration
from wealthdesk.models.proposal import Proposal

__all__ = [
    # Base
    "Base",
    # Models
    "Proposal",
    "Illustration",
    "AnalysisJob",
    "AuditLog",
    # Enums
    "ProposalStatus",
    "ExtractionStatus",
    "ReviewStatus",
    "AnalysisStatus",
    "ProposalType",
    "TargetCurrency",
    "ProposalPage",
]
