"""Product catalog integrations."""

from __future__ import annotations

from wealthdesk.integrations.catalog.base import ProductCatalog
from wealthdesk.integrations.catalog.client import CatalogClient
from wealthdesk.integrations.catalog.static import StaticCatalog

__all__ = ["CatalogClient", "ProductCatalog", "StaticCatalog"]
