"""Tests for the extractor adapter's retry policy.

Covers:
- TransientError retried up to max_attempts, then re-raised
- ExtractionError never retried
- Attempt timeout counts as a transient failure
- Low-confidence output rejected as unusable
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from factories import make_extracted

from wealthdesk.errors import ExtractionError, ExtractionErrorKind, TransientError
from wealthdesk.pipeline.extractor import IllustrationExtractor


def _extractor(backend, **kwargs) -> IllustrationExtractor:
    params = {
        "max_attempts": 3,
        "attempt_timeout": 1.0,
        "backoff_min": 0,
        "backoff_max": 0,
        "min_usable_confidence": 0.2,
    }
    params.update(kwargs)
    return IllustrationExtractor(backend=backend, **params)


class TestRetryPolicy:
    @pytest.mark.asyncio()
    async def test_transient_then_success(self):
        backend = AsyncMock()
        backend.extract = AsyncMock(side_effect=[
            TransientError("503"),
            TransientError("503"),
            make_extracted(),
        ])

        data = await _extractor(backend).extract(b"%PDF-", "a.pdf")

        assert data.basic_info.insurance_name == "Pru Shield Life"
        assert backend.extract.await_count == 3

    @pytest.mark.asyncio()
    async def test_exhausted_attempts_reraise(self):
        backend = AsyncMock()
        backend.extract = AsyncMock(side_effect=TransientError("Extraction service unavailable"))

        with pytest.raises(TransientError, match="unavailable"):
            await _extractor(backend, max_attempts=4).extract(b"%PDF-", "a.pdf")

        assert backend.extract.await_count == 4

    @pytest.mark.asyncio()
    async def test_typed_error_not_retried(self):
        backend = AsyncMock()
        backend.extract = AsyncMock(
            side_effect=ExtractionError(ExtractionErrorKind.UNSUPPORTED_FORMAT, "scanned image")
        )

        with pytest.raises(ExtractionError) as exc_info:
            await _extractor(backend).extract(b"%PDF-", "a.pdf")

        assert exc_info.value.kind == ExtractionErrorKind.UNSUPPORTED_FORMAT
        assert backend.extract.await_count == 1

    @pytest.mark.asyncio()
    async def test_attempt_timeout_is_transient(self):
        calls = 0

        class SlowBackend:
            async def extract(self, file_bytes: bytes, filename: str = "x.pdf"):
                nonlocal calls
                calls += 1
                await asyncio.sleep(1)
                return make_extracted()

        with pytest.raises(TransientError, match="exceeded"):
            await _extractor(SlowBackend(), max_attempts=2, attempt_timeout=0.01).extract(b"%PDF-", "a.pdf")

        assert calls == 2


class TestUsability:
    @pytest.mark.asyncio()
    async def test_low_confidence_rejected(self):
        backend = AsyncMock()
        backend.extract = AsyncMock(return_value=make_extracted(confidence=0.1))

        with pytest.raises(ExtractionError) as exc_info:
            await _extractor(backend).extract(b"%PDF-", "a.pdf")

        assert exc_info.value.kind == ExtractionErrorKind.LOW_CONFIDENCE
        assert backend.extract.await_count == 1

    @pytest.mark.asyncio()
    async def test_confidence_at_minimum_accepted(self):
        backend = AsyncMock()
        backend.extract = AsyncMock(return_value=make_extracted(confidence=0.2))

        data = await _extractor(backend).extract(b"%PDF-", "a.pdf")
        assert data.confidence == 0.2
