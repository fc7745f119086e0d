"""SystemEvent schema — the event type that flows through the pipeline.

Every state change emits a SystemEvent. Subscribers (the audit logger, and
anything registered at startup) consume these events asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the pipeline."""

    # Proposal lifecycle
    PROPOSAL_CREATED = "proposal.created"
    PROPOSAL_STATUS_CHANGED = "proposal.status_changed"
    PROPOSAL_DELETED = "proposal.deleted"

    # Illustrations
    ILLUSTRATION_UPLOADED = "illustration.uploaded"
    ILLUSTRATION_UPDATED = "illustration.updated"
    ILLUSTRATION_DELETED = "illustration.deleted"

    # Extraction
    EXTRACTION_STARTED = "extraction.started"
    EXTRACTION_RETRIED = "extraction.retried"
    EXTRACTION_COMPLETED = "extraction.completed"
    EXTRACTION_FAILED = "extraction.failed"
    EXTRACTION_DISCARDED = "extraction.discarded"

    # Matching
    PRODUCT_MATCHED = "matching.product_matched"

    # Intelligent analysis
    ANALYSIS_STARTED = "analysis.started"
    ANALYSIS_COMPLETED = "analysis.completed"
    ANALYSIS_FAILED = "analysis.failed"

    # Output
    PAGE_RENDERED = "output.page_rendered"
    DOCUMENT_DOWNLOADED = "output.document_downloaded"

    # External calls
    EXTERNAL_API_CALL = "external.api_call"
    LLM_REQUEST = "llm.request"
    LLM_RESPONSE = "llm.response"
    LLM_ERROR = "llm.error"


class SystemEvent(BaseModel):
    """Core event that flows through the pipeline.

    Immutable once created. Consumed by the audit logger, which writes
    to the audit_log table.
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional, not every event has a proposal)
    proposal_id: uuid.UUID | None = None
    illustration_id: uuid.UUID | None = None
    actor_id: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
