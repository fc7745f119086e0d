"""Async httpx client for the page renderer / PDF compositing service.

Endpoints:
    POST {base_url}/proposals/{id}/pages/{n}   JSON context → HTML fragment
    POST {base_url}/proposals/{id}/document    JSON {context, pages} → PDF bytes

Any failure here is fatal for the generation step that triggered it.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx

from wealthdesk.config import settings
from wealthdesk.errors import FatalRenderError

logger = logging.getLogger(__name__)


class PageRendererClient:
    """Thin async wrapper around the renderer."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        self._base_url = (base_url or settings.renderer.renderer_url).rstrip("/")
        self._timeout = httpx.Timeout(timeout or settings.renderer.renderer_timeout, connect=5.0)

    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(f"{self._base_url}{path}", json=payload)
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as exc:
            logger.error("Renderer HTTP %s on %s", exc.response.status_code, path)
            raise FatalRenderError(
                f"Renderer failed with HTTP {exc.response.status_code}",
                details={"path": path, "status_code": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Renderer unreachable on %s: %s", path, exc)
            raise FatalRenderError(f"Renderer unavailable: {exc}", details={"path": path}) from exc

    async def render(self, proposal_id: uuid.UUID, page_number: int, context: dict[str, Any]) -> str:
        """Render one logical page to an HTML fragment."""
        response = await self._post(f"/proposals/{proposal_id}/pages/{page_number}", context)
        return response.text

    async def render_full(self, proposal_id: uuid.UUID, context: dict[str, Any], pages: list[str]) -> bytes:
        """Composite the rendered pages into the final PDF document."""
        response = await self._post(f"/proposals/{proposal_id}/document", {"context": context, "pages": pages})
        return response.content
