"""Builders and fakes shared by the pipeline tests.

No network, no database: the orchestrator runs over the in-memory store,
a dict-backed Redis stand-in, and fake blob storage / renderer / extractor.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any

from wealthdesk.errors import FatalRenderError
from wealthdesk.pipeline.store import InMemoryIllustrationStore
from wealthdesk.schemas.extraction import ExtractedData
from wealthdesk.schemas.matching import CatalogProduct
from wealthdesk.schemas.proposal import IllustrationRecord, IncomingFile

PDF_BYTES = b"%PDF-1.7\n1 0 obj << /Type /Catalog >> endobj\ntrailer\n%%EOF\n"


# ── Builders ─────────────────────────────────────────────────────────


def make_extracted(
    name: str | None = "Pru Shield Life",
    provider: str | None = "Prudential",
    confidence: float = 0.9,
    premium_per_year: int | None = 1000,
    payment_period: str | None = "20 years",
    cash_values: list[tuple[int, int]] | None = None,
) -> ExtractedData:
    """ExtractedData as the extraction service would return it."""
    if cash_values is None:
        cash_values = [(age, (age - 30) ** 2 * 100) for age in range(31, 100)]
    return ExtractedData.model_validate({
        "basic_info": {
            "insurance_name": name,
            "insurance_provider": provider,
            "currency": "MYR",
            "product_category": "Life",
        },
        "financial_data": {
            "death_benefit": "RM 500,000",
            "premium_per_year": premium_per_year,
            "payment_period": payment_period,
            "coverage_term": "to age 100",
        },
        "cash_value_data": {
            "breakeven_years": None,
            "cash_values": [{"age": age, "value": value} for age, value in cash_values],
        },
        "extraction_metadata": {"confidence_score": confidence, "extraction_notes": ""},
    })


def pdf(filename: str = "policy.pdf", data: bytes = PDF_BYTES, content_type: str | None = "application/pdf") -> IncomingFile:
    return IncomingFile(filename=filename, content_type=content_type, data=data)


CATALOG_PRODUCTS = [
    CatalogProduct(insurance_id="PRU-001", insurance_name="PruShield Life Insurance", provider="Prudential"),
    CatalogProduct(insurance_id="PRU-002", insurance_name="PRUWealth Plus", provider="Prudential"),
    CatalogProduct(insurance_id="AIA-001", insurance_name="A-Life Legasi Beyond", provider="AIA"),
    CatalogProduct(insurance_id="GE-001", insurance_name="Great Legacy", provider="Great Eastern"),
]


# ── Fakes ────────────────────────────────────────────────────────────


class FakeRedis:
    """The subset of redis.asyncio.Redis used by PageCache."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.expiry: dict[str, int | None] = {}

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.data[key] = value
        self.expiry[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed


class FakeBlobStorage:
    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self._counter = 0

    async def put(self, data: bytes, filename: str) -> str:
        self._counter += 1
        ref = f"blob-{self._counter}-{filename}"
        self.blobs[ref] = data
        return ref

    async def get(self, ref: str) -> bytes:
        return self.blobs[ref]

    async def delete(self, ref: str) -> None:
        self.blobs.pop(ref, None)
        self.deleted.append(ref)


class FakeRenderer:
    """Renders pages as small HTML strings; can be told to fail."""

    def __init__(self) -> None:
        self.rendered: list[int] = []
        self.fail_pages: set[int] = set()

    async def render(self, proposal_id: Any, page_number: int, context: dict[str, Any]) -> str:
        if page_number in self.fail_pages:
            raise FatalRenderError(f"Renderer failed with HTTP 500 on page {page_number}")
        self.rendered.append(page_number)
        ages = context["analysis"]["selected_ages"]
        return f"<section data-page='{page_number}'>{context['page']['title']} ages={ages}</section>"

    async def render_full(self, proposal_id: Any, context: dict[str, Any], pages: list[str]) -> bytes:
        return b"%PDF-1.7\n" + "".join(pages).encode()


class FakeExtractionBackend:
    """Returns a configured result per filename.

    A result may be ExtractedData, an exception instance (raised), or a
    callable returning either. ``gate`` blocks every call until set.
    ``max_in_flight`` records the most concurrent calls seen for one filename.
    """

    def __init__(self, default: ExtractedData | None = None) -> None:
        self.default = default or make_extracted()
        self.results: dict[str, Any] = {}
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.in_flight: dict[str, int] = {}
        self.max_in_flight = 0

    async def extract(self, file_bytes: bytes, filename: str = "illustration.pdf") -> ExtractedData:
        self.calls.append(filename)
        self.started.set()
        self.in_flight[filename] = self.in_flight.get(filename, 0) + 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight[filename])
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
        finally:
            self.in_flight[filename] -= 1
        result = self.results.get(filename, self.default)
        if callable(result) and not isinstance(result, ExtractedData):
            result = result()
        if isinstance(result, BaseException):
            raise result
        return result




class SlowReadStore(InMemoryIllustrationStore):
    """In-memory store whose illustration reads return after a delay.

    The snapshot is taken before the delay, like a database read that
    completes while another writer commits.
    """

    def __init__(self, delay: float = 0.01) -> None:
        super().__init__()
        self.delay = delay

    async def get_illustration(self, illustration_id: uuid.UUID) -> IllustrationRecord | None:
        snapshot = await super().get_illustration(illustration_id)
        await asyncio.sleep(self.delay)
        return snapshot
