"""Extraction service output parsing.

Handles the messy reality of LLM-backed JSON output: markdown fences,
trailing commas, a wrapping {"data": ...} envelope. Validates against
the ExtractedData schema.
"""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import ValidationError

from wealthdesk.errors import ExtractionError, ExtractionErrorKind
from wealthdesk.schemas.extraction import ExtractedData


def parse_extracted_data(raw: str | dict[str, Any]) -> ExtractedData:
    """Parse extraction service output into ExtractedData.

    Args:
        raw: Response body text, or an already-decoded JSON object.

    Returns:
        Validated ExtractedData.

    Raises:
        ExtractionError: UNPARSEABLE if JSON decoding or schema validation fails.
    """
    if isinstance(raw, str):
        cleaned = _strip_markdown_fences(raw.strip())
        cleaned = _fix_trailing_commas(cleaned)
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise ExtractionError(
                ExtractionErrorKind.UNPARSEABLE,
                f"Extraction service returned invalid JSON: {exc}",
                details={"raw_output": raw[:500]},
            ) from exc
    else:
        data = raw

    if isinstance(data, dict) and "data" in data and "basic_info" not in data:
        data = data["data"]

    if not isinstance(data, dict):
        raise ExtractionError(
            ExtractionErrorKind.UNPARSEABLE,
            f"Extraction output must be an object, got {type(data).__name__}",
        )

    try:
        return ExtractedData.model_validate(data)
    except ValidationError as exc:
        raise ExtractionError(
            ExtractionErrorKind.UNPARSEABLE,
            f"Extraction output failed validation: {exc.error_count()} error(s)",
            details={"errors": exc.errors(include_url=False, include_input=False)},
        ) from exc


def _strip_markdown_fences(text: str) -> str:
    """Remove markdown code fences wrapping JSON."""
    match = re.search(r"```(?:json)?\s*\n?(.*?)\n?\s*```", text, re.DOTALL)
    if match:
        return match.group(1).strip()
    return text


def _fix_trailing_commas(text: str) -> str:
    """Remove trailing commas before } or ]."""
    return re.sub(r",\s*([}\]])", r"\1", text)
