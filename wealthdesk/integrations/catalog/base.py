"""Catalog read interface consumed by the product matcher."""

from __future__ import annotations

from typing import Protocol

from wealthdesk.schemas.matching import CatalogProduct


class ProductCatalog(Protocol):
    """Read-only access to the canonical product catalog."""

    async def lookup_exact(self, name: str, provider: str | None) -> CatalogProduct | None:
        """Return the single product whose normalized (name, provider) equals the input.

        Returns None when there is no hit or the hit is ambiguous.
        """
        ...

    async def list_candidates(self, provider: str | None = None) -> list[CatalogProduct]:
        """Products for fuzzy scoring, scoped to a provider when one is given."""
        ...

    async def get_product(self, insurance_id: str) -> CatalogProduct | None:
        """Fetch one product by ID (used to validate advisor selections)."""
        ...
