"""Async httpx client for the product catalog read API.

Endpoints:
    GET {base_url}/lookup?name=...&provider=...   → product or 404
    GET {base_url}?provider=...                   → {"data": [product, ...]}
    GET {base_url}/{insurance_id}                 → product or 404
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from wealthdesk.config import settings
from wealthdesk.errors import TransientError
from wealthdesk.schemas.matching import CatalogProduct

logger = logging.getLogger(__name__)


class CatalogClient:
    """Thin async wrapper around the catalog read API."""

    def __init__(self, base_url: str | None = None, api_key: str | None = None) -> None:
        self._base_url = (base_url or settings.catalog.catalog_api_url).rstrip("/")
        self._api_key = settings.catalog.catalog_api_key if api_key is None else api_key
        self._timeout = httpx.Timeout(settings.catalog.catalog_timeout, connect=5.0)

    async def _get(self, path: str, params: dict[str, str] | None = None) -> Any | None:
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(f"{self._base_url}{path}", params=params, headers=headers)
                if response.status_code == 404:
                    return None
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as exc:
            logger.warning("Catalog API timeout on %s", path)
            raise TransientError("Catalog API timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("Catalog API error on %s: %s", path, exc)
            raise TransientError(f"Catalog API unavailable: {exc}") from exc

    @staticmethod
    def _unwrap(payload: Any) -> Any:
        if isinstance(payload, dict) and "data" in payload:
            return payload["data"]
        return payload

    async def lookup_exact(self, name: str, provider: str | None) -> CatalogProduct | None:
        params = {"name": name}
        if provider:
            params["provider"] = provider
        payload = self._unwrap(await self._get("/lookup", params))
        if not payload:
            return None
        # The API may return every hit; only an unambiguous one counts
        if isinstance(payload, list):
            return CatalogProduct.model_validate(payload[0]) if len(payload) == 1 else None
        return CatalogProduct.model_validate(payload)

    async def list_candidates(self, provider: str | None = None) -> list[CatalogProduct]:
        params = {"provider": provider} if provider else None
        payload = self._unwrap(await self._get("", params)) or []
        return [CatalogProduct.model_validate(item) for item in payload]

    async def get_product(self, insurance_id: str) -> CatalogProduct | None:
        payload = self._unwrap(await self._get(f"/{insurance_id}"))
        return CatalogProduct.model_validate(payload) if payload else None
