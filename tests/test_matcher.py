"""Tests for the product matcher — normalization, exact and fuzzy matching.

Covers:
- "Pru Shield Life" vs catalog "PruShield Life Insurance" → accepted fuzzy match
- Exact normalized (name, provider) hit → confidence 1.0, no fuzzy pass
- Floor: nothing similar → empty candidates, manual input
- Tie-break by provider, sorting and score bounds
"""

from __future__ import annotations

import pytest
from factories import CATALOG_PRODUCTS, make_extracted

from wealthdesk.integrations.catalog.static import StaticCatalog
from wealthdesk.pipeline.matcher import ProductMatcher, name_similarity, rank_candidates
from wealthdesk.pipeline.normalize import normalize_product_name, providers_match
from wealthdesk.schemas.matching import CatalogProduct


@pytest.fixture()
def matcher() -> ProductMatcher:
    return ProductMatcher(StaticCatalog(CATALOG_PRODUCTS), acceptance_threshold=0.75, floor=0.30, top_n=5)


class TestNormalization:
    def test_generic_words_dropped(self):
        assert normalize_product_name("PruShield Life Insurance") == "prushield life"

    def test_punctuation_and_spacing(self):
        assert normalize_product_name("  A-Life   Legasi, Beyond ") == "a life legasi beyond"

    def test_only_generic_words_kept(self):
        assert normalize_product_name("Insurance Plan") == "insurance plan"

    def test_provider_variants_match(self):
        assert providers_match("Prudential Assurance Malaysia Berhad", "Prudential")
        assert not providers_match("AIA", "Prudential")
        assert not providers_match(None, "Prudential")


class TestSimilarity:
    def test_spacing_variants_score_high(self):
        assert name_similarity("pru shield life", "prushield life") >= 0.95

    def test_bounds(self):
        assert name_similarity("abc", "abc") == 1.0
        assert name_similarity("", "abc") == 0.0
        assert 0.0 <= name_similarity("great legacy", "pruwealth plus") <= 1.0


class TestProductMatcher:
    @pytest.mark.asyncio()
    async def test_spacing_variant_is_accepted_fuzzy_match(self, matcher):
        result = await matcher.match(make_extracted(name="Pru Shield Life", provider="Prudential"))

        assert result.exact_match is None
        assert result.fuzzy_matches[0].insurance_id == "PRU-001"
        assert result.fuzzy_matches[0].similarity_score >= 0.75
        assert result.match_confidence >= 0.75
        assert result.requires_manual_input is False
        assert result.best_insurance_id == "PRU-001"

    @pytest.mark.asyncio()
    async def test_exact_match(self, matcher):
        result = await matcher.match(make_extracted(name="PRUWealth Plus", provider="Prudential"))

        assert result.exact_match is not None
        assert result.exact_match.insurance_id == "PRU-002"
        assert result.match_confidence == 1.0
        assert result.requires_manual_input is False
        assert result.fuzzy_matches == []

    @pytest.mark.asyncio()
    async def test_nothing_above_floor(self, matcher):
        result = await matcher.match(make_extracted(name="XXXXXXXX", provider="Nobody"))

        assert result.fuzzy_matches == []
        assert result.match_confidence == 0.0
        assert result.requires_manual_input is True

    @pytest.mark.asyncio()
    async def test_weak_match_requires_manual_input(self, matcher):
        result = await matcher.match(make_extracted(name="Wealth Builder", provider="Prudential"))

        assert result.fuzzy_matches
        assert 0.30 <= result.match_confidence < 0.75
        assert result.requires_manual_input is True
        assert result.best_insurance_id is None

    @pytest.mark.asyncio()
    async def test_unknown_provider_falls_back_to_whole_catalog(self, matcher):
        result = await matcher.match(make_extracted(name="Great Legacy", provider="Unknown Insurer"))

        assert result.fuzzy_matches[0].insurance_id == "GE-001"
        assert result.requires_manual_input is False

    @pytest.mark.asyncio()
    async def test_missing_name_requires_manual_input(self, matcher):
        result = await matcher.match(make_extracted(name=None))

        assert result.requires_manual_input is True
        assert result.fuzzy_matches == []

    @pytest.mark.asyncio()
    async def test_results_sorted_and_bounded(self, matcher):
        result = await matcher.match(make_extracted(name="Legacy", provider=None))

        scores = [m.similarity_score for m in result.fuzzy_matches]
        assert scores == sorted(scores, reverse=True)
        assert all(0.0 <= s <= 1.0 for s in scores)
        assert len(scores) <= 5

    @pytest.mark.asyncio()
    async def test_search_spans_providers(self, matcher):
        results = await matcher.search("legacy", provider="Prudential")

        assert results[0].insurance_id == "GE-001"
        assert results[0].provider == "Great Eastern"

    @pytest.mark.asyncio()
    async def test_search_without_hits(self, matcher):
        assert await matcher.search("zzzz qqqq") == []


class TestRankCandidates:
    def test_tie_prefers_matching_provider(self):
        products = [
            CatalogProduct(insurance_id="GE-9", insurance_name="Legacy", provider="Great Eastern"),
            CatalogProduct(insurance_id="AIA-9", insurance_name="Legacy", provider="AIA"),
        ]

        ranked = rank_candidates("Legacy", "AIA", products, top_n=5, floor=0.3)

        assert [m.insurance_id for m in ranked] == ["AIA-9", "GE-9"]
        assert ranked[0].similarity_score == ranked[1].similarity_score

    def test_top_n(self):
        products = [
            CatalogProduct(insurance_id=f"P{i}", insurance_name=f"Legacy {i}", provider="X")
            for i in range(8)
        ]
        assert len(rank_candidates("Legacy", None, products, top_n=5, floor=0.3)) == 5

    def test_floor_drops_candidates(self):
        products = [CatalogProduct(insurance_id="P1", insurance_name="Completely Different", provider="X")]
        assert rank_candidates("Legacy", None, products, top_n=5, floor=0.9) == []
