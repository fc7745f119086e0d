"""Extractor adapter — PDF bytes in, validated ExtractedData out.

Owns the retry policy for the extraction stage:
    - TransientError (network, 5xx, 429, attempt timeout) → retried with
      exponential backoff, bounded by settings.extraction.max_attempts
    - ExtractionError (unsupported format, unparseable, low confidence) →
      never retried, surfaced to the caller immediately

Stateless from the pipeline's perspective. No DB access — caller persists results.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Protocol

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from wealthdesk.audit.events import emit
from wealthdesk.config import settings
from wealthdesk.errors import ExtractionError, ExtractionErrorKind, TransientError
from wealthdesk.integrations.extraction.client import ExtractionServiceClient
from wealthdesk.schemas.events import EventType, SystemEvent
from wealthdesk.schemas.extraction import ExtractedData

logger = logging.getLogger(__name__)


class ExtractionBackend(Protocol):
    async def extract(self, file_bytes: bytes, filename: str = ...) -> ExtractedData: ...


class IllustrationExtractor:
    """Wraps an extraction backend with timeout, retry and usability checks."""

    def __init__(
        self,
        backend: ExtractionBackend | None = None,
        max_attempts: int | None = None,
        attempt_timeout: float | None = None,
        backoff_min: float | None = None,
        backoff_max: float | None = None,
        min_usable_confidence: float | None = None,
    ) -> None:
        cfg = settings.extraction
        self._backend = backend or ExtractionServiceClient()
        self.max_attempts = max_attempts or cfg.max_attempts
        self._attempt_timeout = attempt_timeout or cfg.extraction_timeout
        self._backoff_min = cfg.backoff_min if backoff_min is None else backoff_min
        self._backoff_max = cfg.backoff_max if backoff_max is None else backoff_max
        self._min_confidence = (
            cfg.min_usable_confidence if min_usable_confidence is None else min_usable_confidence
        )

    async def extract(
        self,
        file_bytes: bytes,
        filename: str,
        illustration_id: uuid.UUID | None = None,
    ) -> ExtractedData:
        """Extract structured data from one illustration PDF.

        Raises:
            TransientError: All attempts failed transiently.
            ExtractionError: Typed, non-retryable failure.
        """

        async def _log_retry(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                "Extraction attempt %d/%d failed for %s: %s",
                state.attempt_number,
                self.max_attempts,
                filename,
                exc,
            )
            await emit(SystemEvent(
                event_type=EventType.EXTRACTION_RETRIED,
                illustration_id=illustration_id,
                data={"attempt": state.attempt_number, "error": str(exc)},
                source_module="pipeline.extractor",
            ))

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=self._backoff_min, max=self._backoff_max),
            retry=retry_if_exception_type(TransientError),
            before_sleep=_log_retry,
            reraise=True,
        )

        extracted: ExtractedData | None = None
        async for attempt in retrying:
            with attempt:
                extracted = await self._attempt(file_bytes, filename)

        assert extracted is not None  # noqa: S101
        self._check_usable(extracted)
        return extracted

    async def _attempt(self, file_bytes: bytes, filename: str) -> ExtractedData:
        """One bounded attempt. A timeout is a transport failure."""
        try:
            async with asyncio.timeout(self._attempt_timeout):
                return await self._backend.extract(file_bytes, filename)
        except TimeoutError as exc:
            raise TransientError(f"Extraction attempt exceeded {self._attempt_timeout:.0f}s") from exc

    def _check_usable(self, extracted: ExtractedData) -> None:
        confidence = extracted.extraction_metadata.confidence_score
        if confidence < self._min_confidence:
            raise ExtractionError(
                ExtractionErrorKind.LOW_CONFIDENCE,
                f"Extraction confidence {confidence:.2f} is below the usable minimum "
                f"of {self._min_confidence:.2f}",
                details={"confidence": confidence},
            )
