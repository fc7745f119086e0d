"""Pipeline exception taxonomy.

Every error carries a human-readable message, an HTTP-style status code for
the API boundary, and an optional details dict. Match ambiguity is not an
error — it is represented as data (``DatabaseMatch.requires_manual_input``).
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PipelineError):
    """Bad input shape, file count/size limits exceeded. Never retried."""

    status_code = 422


class ConflictError(PipelineError):
    """Mutation not allowed in the proposal's current status."""

    status_code = 409


class NotFoundError(PipelineError):
    """Proposal, illustration or job does not exist."""

    status_code = 404


class NotReadyError(PipelineError):
    """Requested output is not available yet (e.g. download before completion)."""

    status_code = 409


class TransientError(PipelineError):
    """Upstream service unavailable or timed out. Eligible for bounded retry."""

    status_code = 503


class ExtractionErrorKind(str, Enum):
    """Typed, non-retryable extraction failures."""

    UNSUPPORTED_FORMAT = "unsupported_format"
    UNPARSEABLE = "unparseable"
    LOW_CONFIDENCE = "low_confidence"


class ExtractionError(PipelineError):
    """The extraction service understood the request but could not produce usable data."""

    status_code = 422

    def __init__(
        self,
        kind: ExtractionErrorKind,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.kind = kind


class FatalRenderError(PipelineError):
    """Unrecoverable page-generation failure. Moves the proposal to failed."""

    status_code = 502
