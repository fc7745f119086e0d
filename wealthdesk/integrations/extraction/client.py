"""Async httpx client for the external document-understanding service.

Endpoint: POST {base_url}/extract (multipart field "file")
Auth: Bearer token when configured

One call is one attempt. Retries live in the extractor adapter.
"""

from __future__ import annotations

import logging

import httpx

from wealthdesk.config import settings
from wealthdesk.errors import ExtractionError, ExtractionErrorKind, TransientError
from wealthdesk.integrations.extraction.parsing import parse_extracted_data
from wealthdesk.schemas.extraction import ExtractedData

logger = logging.getLogger(__name__)

# Service error codes that map onto typed extraction errors
_ERROR_KINDS: dict[str, ExtractionErrorKind] = {
    "unsupported_format": ExtractionErrorKind.UNSUPPORTED_FORMAT,
    "unparseable": ExtractionErrorKind.UNPARSEABLE,
    "low_confidence": ExtractionErrorKind.LOW_CONFIDENCE,
}

# Statuses worth retrying: throttling and upstream trouble
_TRANSIENT_STATUSES = {408, 429, 500, 502, 503, 504}


class ExtractionServiceClient:
    """Thin async wrapper around the extraction service."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._base_url = (base_url or settings.extraction.extraction_service_url).rstrip("/")
        self._api_key = settings.extraction.extraction_api_key if api_key is None else api_key
        attempt_timeout = timeout or settings.extraction.extraction_timeout
        self._timeout = httpx.Timeout(attempt_timeout, connect=10.0)

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            return {}
        return {"Authorization": f"Bearer {self._api_key}"}

    async def extract(self, file_bytes: bytes, filename: str = "illustration.pdf") -> ExtractedData:
        """Send one PDF to the service and return its structured extraction.

        Raises:
            TransientError: Network failure, timeout, 408/429/5xx.
            ExtractionError: The service rejected or could not understand the document.
        """
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}/extract",
                    files={"file": (filename, file_bytes, "application/pdf")},
                    headers=self._headers(),
                )
        except httpx.TimeoutException as exc:
            logger.warning("Extraction service timeout for %s", filename)
            raise TransientError("Extraction service timed out") from exc
        except httpx.TransportError as exc:
            logger.warning("Extraction service unreachable: %s", exc)
            raise TransientError(f"Extraction service unavailable: {exc}") from exc

        if response.status_code in _TRANSIENT_STATUSES:
            raise TransientError(
                f"Extraction service returned HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )
        if response.status_code >= 400:
            raise self._typed_error(response)

        return parse_extracted_data(response.text)

    def _typed_error(self, response: httpx.Response) -> ExtractionError:
        """Map a 4xx body {"error": {"code", "message"}} onto an ExtractionError."""
        code = ""
        message = f"Extraction service rejected the document (HTTP {response.status_code})"
        try:
            body = response.json()
            error = body.get("error") or {}
            code = str(error.get("code", ""))
            message = str(error.get("message") or message)
        except (ValueError, AttributeError):
            logger.debug("Extraction error body was not JSON: %s", response.text[:200])

        if response.status_code == 415:
            kind = ExtractionErrorKind.UNSUPPORTED_FORMAT
        else:
            kind = _ERROR_KINDS.get(code, ExtractionErrorKind.UNPARSEABLE)
        return ExtractionError(kind, message, details={"status_code": response.status_code, "code": code})
