"""Pydantic schemas for extracted illustration data.

ExtractedData is a strict tagged record: one sub-model per group, every field
optional and typed. Loosely-typed service output is validated here, at the
ingestion boundary, and never propagated as raw dicts.
All money fields use Decimal.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_EMPTY_MARKERS = {"", "-", "n/a", "na", "none", "null", "nil"}
_NUMBER_RE = re.compile(r"-?\d[\d,]*(?:\.\d+)?")
_INT_RE = re.compile(r"\d+")


def parse_money(value: Any) -> Decimal | None:
    """Parse a money-ish value ("RM 1,250,000.00", 5000, "n/a") into a Decimal."""
    if value is None or isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("boolean is not a money amount")
    if isinstance(value, int | float):
        return Decimal(str(value))
    text = str(value).strip()
    if text.lower() in _EMPTY_MARKERS:
        return None
    match = _NUMBER_RE.search(text)
    if match is None:
        raise ValueError(f"not a money amount: {value!r}")
    try:
        return Decimal(match.group(0).replace(",", ""))
    except InvalidOperation as exc:
        raise ValueError(f"not a money amount: {value!r}") from exc


def _parse_optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, int):
        return value
    text = str(value).strip()
    if text.lower() in _EMPTY_MARKERS:
        return None
    match = _INT_RE.search(text)
    if match is None:
        raise ValueError(f"not a whole number: {value!r}")
    return int(match.group(0))


class _Group(BaseModel):
    """Base for every ExtractedData sub-group."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


# ── Sub-groups ───────────────────────────────────────────────────────


class BasicInfo(_Group):
    """Product identity fields — the matcher's input."""

    insurance_name: str | None = None
    insurance_provider: str | None = None
    currency: str | None = None
    product_category: str | None = None


class FinancialData(_Group):
    death_benefit: Decimal | None = None
    premium_per_year: Decimal | None = None
    total_premium: Decimal | None = None
    payment_period: str | None = None  # e.g. "20 years"
    coverage_term: str | None = None  # e.g. "to age 100"

    @field_validator("death_benefit", "premium_per_year", "total_premium", mode="before")
    @classmethod
    def _money(cls, v: Any) -> Decimal | None:
        return parse_money(v)

    @field_validator("payment_period", "coverage_term", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str | None:
        return None if v is None else str(v)


class CashValuePoint(_Group):
    """Projected cash surrender value at a given age."""

    age: int = Field(ge=0, le=150)
    value: Decimal

    @field_validator("value", mode="before")
    @classmethod
    def _money(cls, v: Any) -> Decimal:
        parsed = parse_money(v)
        if parsed is None:
            raise ValueError("cash value is required")
        return parsed


class CashValueData(_Group):
    """Cash value projection. Ages are strictly increasing after validation.

    Out-of-order points are sorted. A repeated age with the same value is
    merged; a repeated age with a different value is rejected.
    """

    has_cash_value: bool = False
    breakeven_years: int | None = None
    cash_values: list[CashValuePoint] = Field(default_factory=list)

    @field_validator("breakeven_years", mode="before")
    @classmethod
    def _years(cls, v: Any) -> int | None:
        return _parse_optional_int(v)

    @model_validator(mode="after")
    def _strictly_increasing_ages(self) -> CashValueData:
        by_age: dict[int, CashValuePoint] = {}
        for point in self.cash_values:
            existing = by_age.get(point.age)
            if existing is None:
                by_age[point.age] = point
            elif existing.value != point.value:
                msg = (
                    f"Conflicting cash values for age {point.age}: "
                    f"{existing.value} vs {point.value}"
                )
                raise ValueError(msg)
        self.cash_values = [by_age[age] for age in sorted(by_age)]
        if self.cash_values:
            self.has_cash_value = True
        return self


class Ratings(_Group):
    snp_rating: str | None = None
    financial_strength: str | None = None


class PolicyDetails(_Group):
    benefits: str | None = None
    exclusions: str | None = None
    conditions: str | None = None


class ExtractionMetadata(_Group):
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    extraction_notes: str = ""

    @field_validator("extraction_notes", mode="before")
    @classmethod
    def _notes(cls, v: Any) -> str:
        return "" if v is None else str(v)


# ── Top-level record ─────────────────────────────────────────────────


class ExtractedData(_Group):
    """Structured facts extracted from one policy illustration."""

    basic_info: BasicInfo = Field(default_factory=BasicInfo)
    financial_data: FinancialData = Field(default_factory=FinancialData)
    cash_value_data: CashValueData = Field(default_factory=CashValueData)
    ratings: Ratings = Field(default_factory=Ratings)
    policy_details: PolicyDetails = Field(default_factory=PolicyDetails)
    extraction_metadata: ExtractionMetadata = Field(default_factory=ExtractionMetadata)

    @property
    def confidence(self) -> float:
        return self.extraction_metadata.confidence_score
