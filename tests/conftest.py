"""Shared fixtures for the pipeline tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from factories import (
    CATALOG_PRODUCTS,
    FakeBlobStorage,
    FakeExtractionBackend,
    FakeRedis,
    FakeRenderer,
)

from wealthdesk.integrations.catalog.static import StaticCatalog
from wealthdesk.pipeline.extractor import IllustrationExtractor
from wealthdesk.pipeline.matcher import ProductMatcher
from wealthdesk.pipeline.orchestrator import PipelineOrchestrator
from wealthdesk.pipeline.page_cache import PageCache
from wealthdesk.pipeline.store import InMemoryIllustrationStore


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture()
def catalog() -> StaticCatalog:
    return StaticCatalog(CATALOG_PRODUCTS)


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def blob_storage() -> FakeBlobStorage:
    return FakeBlobStorage()


@pytest.fixture()
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture()
def backend() -> FakeExtractionBackend:
    return FakeExtractionBackend()


@pytest.fixture()
def store() -> InMemoryIllustrationStore:
    return InMemoryIllustrationStore()


@pytest.fixture()
def make_orchestrator(
    store, catalog, blob_storage, renderer, fake_redis, backend
) -> Callable[..., PipelineOrchestrator]:
    """Factory so tests can tweak limits; defaults retry without backoff."""

    def _make(**overrides: Any) -> PipelineOrchestrator:
        extractor = IllustrationExtractor(
            backend=backend,
            max_attempts=3,
            attempt_timeout=5.0,
            backoff_min=0,
            backoff_max=0,
            min_usable_confidence=0.2,
        )
        kwargs: dict[str, Any] = {
            "store": store,
            "catalog": catalog,
            "blob_storage": blob_storage,
            "renderer": renderer,
            "page_cache": PageCache(fake_redis, ttl=60),
            "extractor": extractor,
            "matcher": ProductMatcher(catalog, acceptance_threshold=0.75, floor=0.30, top_n=5),
        }
        kwargs.update(overrides)
        return PipelineOrchestrator(**kwargs)

    return _make


@pytest.fixture()
def orchestrator(make_orchestrator) -> PipelineOrchestrator:
    return make_orchestrator()


