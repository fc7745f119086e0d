"""Product matcher — reconciles extracted product identity with the catalog.

Pure Python over a read-only catalog. No DB writes, no LLM calls.
The orchestrator persists the resulting DatabaseMatch.

Flow:
    1. Normalize name and provider
    2. Exact catalog lookup on the normalized pair → confidence 1.0, done
    3. Fuzzy scoring (rapidfuzz) scoped to the provider, else catalog-wide
    4. Keep the top N above the floor; manual input below the threshold
"""

from __future__ import annotations

import logging

from rapidfuzz import fuzz

from wealthdesk.config import settings
from wealthdesk.integrations.catalog.base import ProductCatalog
from wealthdesk.pipeline.normalize import normalize_product_name, providers_match
from wealthdesk.schemas.extraction import ExtractedData
from wealthdesk.schemas.matching import CatalogProduct, DatabaseMatch, FuzzyMatch

logger = logging.getLogger(__name__)


def name_similarity(a: str, b: str) -> float:
    """Similarity of two normalized product names in [0.0, 1.0].

    The better of a token-order-insensitive ratio and a ratio over the
    space-stripped strings, so "pru shield" and "prushield" score alike.
    """
    if not a or not b:
        return 0.0
    token_score = fuzz.token_sort_ratio(a, b)
    compact_score = fuzz.ratio(a.replace(" ", ""), b.replace(" ", ""))
    return round(min(max(token_score, compact_score) / 100.0, 1.0), 4)


def rank_candidates(
    name: str | None,
    provider: str | None,
    products: list[CatalogProduct],
    top_n: int,
    floor: float,
) -> list[FuzzyMatch]:
    """Score every product against the extracted name and keep the best N.

    Products scoring below ``floor`` are dropped. Equal scores prefer the
    product whose provider matches the extracted provider, then name order.
    """
    wanted = normalize_product_name(name)
    if not wanted:
        return []

    scored: list[tuple[float, bool, CatalogProduct]] = []
    for product in products:
        score = name_similarity(wanted, normalize_product_name(product.insurance_name))
        if score < floor:
            continue
        scored.append((score, providers_match(product.provider, provider), product))

    scored.sort(key=lambda item: (-item[0], not item[1], item[2].insurance_name))

    return [
        FuzzyMatch(
            insurance_id=product.insurance_id,
            insurance_name=product.insurance_name,
            provider=product.provider,
            similarity_score=score,
        )
        for score, _same_provider, product in scored[:top_n]
    ]


class ProductMatcher:
    """Matches extracted identity fields against a product catalog."""

    def __init__(
        self,
        catalog: ProductCatalog,
        acceptance_threshold: float | None = None,
        floor: float | None = None,
        top_n: int | None = None,
    ) -> None:
        cfg = settings.matching
        self._catalog = catalog
        self.acceptance_threshold = (
            cfg.match_acceptance_threshold if acceptance_threshold is None else acceptance_threshold
        )
        self.floor = cfg.match_floor if floor is None else floor
        self.top_n = top_n or cfg.match_top_n

    async def match(self, extracted: ExtractedData) -> DatabaseMatch:
        """Return exact/fuzzy candidates for one extraction."""
        name = extracted.basic_info.insurance_name
        provider = extracted.basic_info.insurance_provider

        if not normalize_product_name(name):
            logger.info("No product name extracted — manual input required")
            return DatabaseMatch(requires_manual_input=True)

        exact = await self._catalog.lookup_exact(name, provider)
        if exact is not None:
            logger.info("Exact catalog match: %s (%s)", exact.insurance_name, exact.insurance_id)
            return DatabaseMatch(exact_match=exact, match_confidence=1.0, requires_manual_input=False)

        fuzzy: list[FuzzyMatch] = []
        if provider:
            scoped = await self._catalog.list_candidates(provider)
            fuzzy = rank_candidates(name, provider, scoped, self.top_n, self.floor)
        if not fuzzy:
            everything = await self._catalog.list_candidates(None)
            fuzzy = rank_candidates(name, provider, everything, self.top_n, self.floor)

        confidence = fuzzy[0].similarity_score if fuzzy else 0.0
        requires_manual = confidence < self.acceptance_threshold

        logger.info(
            "Fuzzy match for %r: %d candidate(s), confidence=%.2f, manual=%s",
            name,
            len(fuzzy),
            confidence,
            requires_manual,
        )
        return DatabaseMatch(
            fuzzy_matches=fuzzy,
            match_confidence=confidence,
            requires_manual_input=requires_manual,
        )

    async def search(self, query: str, provider: str | None = None, limit: int | None = None) -> list[FuzzyMatch]:
        """Catalog-wide candidates for an advisor's free-text query.

        ``provider`` only breaks ties; products of other providers are kept.
        """
        products = await self._catalog.list_candidates(None)
        return rank_candidates(query, provider, products, limit or self.top_n, self.floor)
