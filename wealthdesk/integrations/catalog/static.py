"""In-process catalog backed by a fixed product list or a JSON file."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from wealthdesk.pipeline.normalize import normalize_product_name, normalize_provider, providers_match
from wealthdesk.schemas.matching import CatalogProduct

logger = logging.getLogger(__name__)


class StaticCatalog:
    """Catalog over an in-memory product list. Read-only after construction."""

    def __init__(self, products: list[CatalogProduct]) -> None:
        self._products = list(products)
        self._by_id = {p.insurance_id: p for p in self._products}

    @classmethod
    def from_json_file(cls, path: str | Path) -> StaticCatalog:
        """Load a catalog from a JSON array of product objects."""
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        products = [CatalogProduct.model_validate(item) for item in raw]
        logger.info("Loaded %d catalog products from %s", len(products), path)
        return cls(products)

    async def lookup_exact(self, name: str, provider: str | None) -> CatalogProduct | None:
        wanted_name = normalize_product_name(name)
        wanted_provider = normalize_provider(provider)
        if not wanted_name:
            return None
        hits = [
            p for p in self._products
            if normalize_product_name(p.insurance_name) == wanted_name
            and (not wanted_provider or normalize_provider(p.provider) == wanted_provider)
        ]
        if len(hits) > 1:
            logger.info("Exact lookup for %r is ambiguous (%d hits)", name, len(hits))
        return hits[0] if len(hits) == 1 else None

    async def list_candidates(self, provider: str | None = None) -> list[CatalogProduct]:
        if not provider:
            return list(self._products)
        return [p for p in self._products if providers_match(p.provider, provider)]

    async def get_product(self, insurance_id: str) -> CatalogProduct | None:
        return self._by_id.get(insurance_id)
