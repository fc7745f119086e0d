"""Pydantic schemas shared across the pipeline."""

from __future__ import annotations

from wealthdesk.schemas.extraction import (
    BasicInfo,
    CashValueData,
    CashValuePoint,
    ExtractedData,
    ExtractionMetadata,
    FinancialData,
    PolicyDetails,
    Ratings,
)
from wealthdesk.schemas.matching import CatalogProduct, DatabaseMatch, FuzzyMatch
from wealthdesk.schemas.proposal import (
    AnalysisJobRecord,
    IllustrationRecord,
    IllustrationUpdate,
    IncomingFile,
    PageContent,
    ProposalCreate,
    ProposalDocument,
    ProposalRecord,
)

__all__ = [
    "AnalysisJobRecord",
    "BasicInfo",
    "CashValueData",
    "CashValuePoint",
    "CatalogProduct",
    "DatabaseMatch",
    "ExtractedData",
    "ExtractionMetadata",
    "FinancialData",
    "FuzzyMatch",
    "IllustrationRecord",
    "IllustrationUpdate",
    "IncomingFile",
    "PageContent",
    "PolicyDetails",
    "ProposalCreate",
    "ProposalDocument",
    "ProposalRecord",
    "Ratings",
]
